import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger("uvicorn.error")

AI_LIVE_MODEL = os.getenv("AI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025")
LIVE_VOICE_NAME = os.getenv("AI_LIVE_VOICE", "Kore")
INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000


@dataclass(frozen=True)
class LiveConfig:
    model: str
    voice_name: str
    system_instruction: str
    input_sample_rate: int = INPUT_SAMPLE_RATE
    output_sample_rate: int = OUTPUT_SAMPLE_RATE


class AudioTransport(Protocol):
    def connect(self, config: LiveConfig) -> None:
        ...

    def disconnect(self) -> None:
        ...


class LiveSession:
    """Scoped handle over one live audio transport. ``close`` is safe to call repeatedly."""

    def __init__(self, transport: AudioTransport, config: LiveConfig) -> None:
        self.transport = transport
        self.config = config
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> "LiveSession":
        if not self._open:
            self.transport.connect(self.config)
            self._open = True
        return self

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self.transport.disconnect()

    def __enter__(self) -> "LiveSession":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class VoiceSessionController:
    """Owns at most one live session. After ``shutdown`` no new session can start."""

    def __init__(self) -> None:
        self._active: Optional[LiveSession] = None
        self._closed = False

    @property
    def active(self) -> Optional[LiveSession]:
        return self._active

    def start(self, transport: AudioTransport, config: LiveConfig) -> LiveSession:
        if self._closed:
            raise RuntimeError("voice controller is shut down")
        self.stop()
        session = LiveSession(transport, config)
        session.open()
        self._active = session
        logger.info("voice_session_started model=%s", config.model)
        return session

    def stop(self) -> None:
        session, self._active = self._active, None
        if session is not None:
            session.close()
            logger.info("voice_session_stopped model=%s", session.config.model)

    def shutdown(self) -> None:
        self._closed = True
        self.stop()


def build_live_config(system_instruction: str) -> LiveConfig:
    return LiveConfig(model=AI_LIVE_MODEL, voice_name=LIVE_VOICE_NAME, system_instruction=system_instruction)
