import pytest

from wellness.core.voice import (
    AI_LIVE_MODEL,
    INPUT_SAMPLE_RATE,
    OUTPUT_SAMPLE_RATE,
    LiveConfig,
    LiveSession,
    VoiceSessionController,
    build_live_config,
)


class RecordingTransport:
    def __init__(self) -> None:
        self.events: list[str] = []

    def connect(self, config: LiveConfig) -> None:
        self.events.append(f"connect:{config.model}")

    def disconnect(self) -> None:
        self.events.append("disconnect")


def test_build_live_config() -> None:
    config = build_live_config("Ты тренер.")
    assert config.model == AI_LIVE_MODEL
    assert config.system_instruction == "Ты тренер."
    assert (config.input_sample_rate, config.output_sample_rate) == (INPUT_SAMPLE_RATE, OUTPUT_SAMPLE_RATE)


def test_live_session_close_is_idempotent() -> None:
    transport = RecordingTransport()
    session = LiveSession(transport, build_live_config("x")).open()
    assert session.is_open
    session.close()
    session.close()
    assert not session.is_open
    assert transport.events == [f"connect:{AI_LIVE_MODEL}", "disconnect"]


def test_live_session_context_manager_releases_on_error() -> None:
    transport = RecordingTransport()
    with pytest.raises(RuntimeError):
        with LiveSession(transport, build_live_config("x")):
            raise RuntimeError("mic lost")
    assert transport.events[-1] == "disconnect"


def test_controller_replaces_active_session() -> None:
    controller = VoiceSessionController()
    first, second = RecordingTransport(), RecordingTransport()
    controller.start(first, build_live_config("a"))
    session = controller.start(second, build_live_config("b"))
    assert first.events[-1] == "disconnect"
    assert controller.active is session
    controller.shutdown()
    controller.stop()
    assert controller.active is None
    assert second.events.count("disconnect") == 1


def test_controller_refuses_start_after_shutdown() -> None:
    controller = VoiceSessionController()
    transport = RecordingTransport()
    controller.start(transport, build_live_config("a"))
    controller.shutdown()
    assert transport.events[-1] == "disconnect"
    with pytest.raises(RuntimeError):
        controller.start(RecordingTransport(), build_live_config("b"))
    assert controller.active is None
