"""Unit tests for the traffic recorder."""
import pytest

from harvest.utils.recorder import EventStatus, EventType, Recorder


@pytest.mark.unit
class TestRecorder:
    """Test Recorder."""

    def test_ignores_events_when_not_recording(self):
        recorder = Recorder("Kick")
        recorder.record(EventType.WS_MESSAGE, status=EventStatus.HANDLED)
        assert recorder.events == []

    def test_records_while_running(self):
        recorder = Recorder("Kick")
        recorder.start()
        recorder.record(EventType.WS_MESSAGE, status=EventStatus.HANDLED, event_name="ChatMessage")
        recorder.record(EventType.XHR_RESPONSE, url="https://kick.com/x", payload={"a": 1})
        recorder.stop()
        recorder.record(EventType.WS_MESSAGE)

        stats = recorder.stats()
        assert stats["total"] == 2
        assert stats["recording"] is False
        assert stats["by_status"] == {"handled": 1, "unhandled": 1}
        assert stats["by_event_name"] == {"ChatMessage": 1}
        assert recorder.events[1]["payload"] == '{"a": 1}'

    def test_stops_when_full(self):
        recorder = Recorder("Kick", max_events=2)
        recorder.start()
        for _ in range(3):
            recorder.record(EventType.WS_MESSAGE)
        assert len(recorder.events) == 2
        assert recorder.recording is False

    def test_unhandled_and_export(self):
        recorder = Recorder("Rumble")
        recorder.start()
        recorder.record(EventType.FETCH_RESPONSE, status=EventStatus.IGNORED)
        recorder.record(EventType.FETCH_RESPONSE, status=EventStatus.UNHANDLED, url="https://rumble.com/?name=x")

        assert [e["url"] for e in recorder.unhandled()] == ["https://rumble.com/?name=x"]
        exported = recorder.export()
        assert exported["platform"] == "Rumble"
        assert exported["stats"]["total"] == 2
        assert len(exported["events"]) == 2

    def test_start_clears_previous_session(self):
        recorder = Recorder()
        recorder.start()
        recorder.record(EventType.WS_MESSAGE)
        recorder.stop()
        recorder.start()
        assert recorder.events == []
