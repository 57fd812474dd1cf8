import json
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from wellness.core.security import get_password_hash
from wellness.core.tool_selector import Capability, ModelTier
from wellness.db.models import Profile, User, UserSettings
from wellness.db.session import SessionLocal, configure_database, create_tables
from wellness.services.llm import AIReply, ChatTurn, GroundingReference, LLMRequestError, get_ai_client


class FakeScenario(str, Enum):
    OK = "OK"
    PLAN_UPDATE = "PLAN_UPDATE"
    EMPTY_REPLY = "EMPTY_REPLY"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    ADDRESS_NOT_FOUND = "ADDRESS_NOT_FOUND"
    TIMEOUT = "TIMEOUT"


class FakeAIClient:
    def __init__(self, scenario: FakeScenario, fixture_dir: Path) -> None:
        self.scenario = scenario
        self.fixture_dir = fixture_dir
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _load_json(self, name: str) -> dict:
        return json.loads((self.fixture_dir / f"{name}.json").read_text(encoding="utf-8"))

    def _load_text(self, name: str) -> str:
        return (self.fixture_dir / f"{name}.txt").read_text(encoding="utf-8")

    def _fail_if_timeout(self, method: str) -> None:
        if self.scenario == FakeScenario.TIMEOUT:
            raise LLMRequestError(provider="fake", model=method, message="simulated timeout")

    def generate_json(self, prompt: str, schema: dict[str, Any], tier: ModelTier = ModelTier.quality) -> dict:
        self.calls.append(("generate_json", {"prompt": prompt, "schema": schema, "tier": tier}))
        self._fail_if_timeout("generate_json")
        if self.scenario == FakeScenario.INVALID_PAYLOAD:
            return self._load_json("ROADMAP_INVALID")
        return self._load_json("ROADMAP_OK")

    def generate_text(
        self,
        prompt: str,
        system_instruction: str = "",
        tools: Iterable[Capability] = (),
        location: Optional[tuple[float, float]] = None,
        tier: ModelTier = ModelTier.fast,
    ) -> AIReply:
        tools = tuple(tools)
        self.calls.append(
            (
                "generate_text",
                {"prompt": prompt, "system_instruction": system_instruction, "tools": tools, "location": location, "tier": tier},
            )
        )
        self._fail_if_timeout("generate_text")
        if Capability.maps in tools:
            if self.scenario == FakeScenario.INVALID_PAYLOAD:
                return AIReply(text=self._load_text("ROUTES_INVALID"))
            return AIReply(text=self._load_text("ROUTES_OK"))
        if self.scenario == FakeScenario.ADDRESS_NOT_FOUND:
            return AIReply(text="NULL")
        return AIReply(text="Москва, улица Арбат, 10")

    def chat(
        self,
        history: Sequence[ChatTurn],
        message: str,
        system_instruction: str = "",
        tools: Iterable[Capability] = (),
        location: Optional[tuple[float, float]] = None,
        tier: ModelTier = ModelTier.quality,
    ) -> AIReply:
        tools = tuple(tools)
        self.calls.append(
            (
                "chat",
                {
                    "history": list(history),
                    "message": message,
                    "system_instruction": system_instruction,
                    "tools": tools,
                    "location": location,
                    "tier": tier,
                },
            )
        )
        self._fail_if_timeout("chat")
        if self.scenario == FakeScenario.PLAN_UPDATE:
            return AIReply(text="Хорошо, добавим больше кардио. [UPDATE_PLAN: больше кардио, меньше силовых]")
        if self.scenario == FakeScenario.EMPTY_REPLY:
            return AIReply(text="  ")
        grounding = []
        if Capability.search in tools:
            grounding.append(GroundingReference(kind="web", uri="https://example.org/oats", title="Oats"))
        return AIReply(text="Попробуйте овсянку с ягодами на завтрак.", grounding=grounding)

    def analyze_image(self, image_bytes: bytes, mime_type: str, prompt: str, schema: dict[str, Any]) -> dict:
        self.calls.append(("analyze_image", {"size": len(image_bytes), "mime_type": mime_type, "prompt": prompt}))
        self._fail_if_timeout("analyze_image")
        if self.scenario == FakeScenario.INVALID_PAYLOAD:
            return {"name": "", "calories": "lots"}
        return self._load_json("FOOD_OK")

    def methods_called(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture(scope="session")
def fixture_dir() -> Path:
    return Path(__file__).resolve().parent / "fixtures" / "llm"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "wellness_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from wellness.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    def _create_user(with_profile: bool = True) -> User:
        email = f"user_{uuid4().hex[:10]}@test.com"
        user = User(email=email, password_hash=get_password_hash("StrongPass123"))
        db_session.add(user)
        db_session.flush()
        if with_profile:
            db_session.add(
                Profile(
                    user_id=user.id,
                    name="Анна",
                    height_cm=168.0,
                    weight_kg=62.0,
                    age=31,
                    gender="female",
                    goal="maintain",
                    activity_level="active",
                    daily_calorie_goal=2000,
                    daily_step_goal=10000,
                    allergies="орехи",
                )
            )
        db_session.add(UserSettings(user_id=user.id))
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


def _signup(client: TestClient, name: Optional[str]) -> dict[str, str]:
    email = f"auth_{uuid4().hex[:10]}@test.com"
    password = "StrongPass123"
    payload: dict[str, Any] = {"email": email, "password": password}
    if name:
        payload["name"] = name
    signup = client.post("/auth/signup", json=payload)
    assert signup.status_code == 201
    login = client.post("/auth/login", data={"username": email, "password": password})
    assert login.status_code == 200
    return {"Authorization": f"Bearer {login.json()['access_token']}"}


@pytest.fixture
def auth_headers(client: TestClient) -> dict[str, str]:
    """Headers for a fresh account that signed up with a name (and so has a starter profile)."""
    return _signup(client, "Анна")


@pytest.fixture
def bare_auth_headers(client: TestClient) -> dict[str, str]:
    """Headers for a fresh account without a profile."""
    return _signup(client, None)


@pytest.fixture
def fake_ai_factory(fixture_dir: Path) -> Callable[[FakeScenario], FakeAIClient]:
    def _factory(scenario: FakeScenario) -> FakeAIClient:
        return FakeAIClient(scenario=scenario, fixture_dir=fixture_dir)

    return _factory


@pytest.fixture
def override_ai(app, fake_ai_factory):
    def _override(scenario: FakeScenario) -> FakeAIClient:
        fake = fake_ai_factory(scenario)
        app.dependency_overrides[get_ai_client] = lambda: fake
        return fake

    return _override
