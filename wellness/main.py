from fastapi import FastAPI

from wellness.api.auth import router as auth_router
from wellness.api.chat_history import router as chat_history_router
from wellness.api.coach import router as coach_router
from wellness.api.daily_log import router as daily_log_router
from wellness.api.dashboard import router as dashboard_router
from wellness.api.profile import router as profile_router
from wellness.api.roadmap import router as roadmap_router
from wellness.api.walks import router as walks_router
from wellness.db.session import create_tables

app = FastAPI(title="Wellness Coach")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api")
def api_root() -> dict[str, str]:
    return {"service": "Wellness Coach API", "status": "ok"}


app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(dashboard_router)
app.include_router(daily_log_router)
app.include_router(roadmap_router)
app.include_router(chat_history_router)
app.include_router(coach_router)
app.include_router(walks_router)
