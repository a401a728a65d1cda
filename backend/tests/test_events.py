"""
Tests for the pipeline log stream.

Covers LogEvent SSE formatting, broadcast to many subscribers, and the
bounded-queue behaviour for slow consumers.
"""
import json
import logging

from translationmatcher.pipeline.events import LogEvent, LogStream, PipelineLog


class TestLogEvent:
    def test_event_creation(self):
        event = LogEvent("Extracted a.pdf", stage="source")
        assert event.level == "info"
        assert event.data == {}
        assert event.timestamp > 0

    def test_to_sse_format(self):
        """Events format as a single SSE data frame."""
        event = LogEvent("Révolution", stage="matching", data={"matches": 2})
        sse = event.to_sse()

        assert sse.startswith("data: ")
        assert sse.endswith("\n\n")
        payload = json.loads(sse[len("data: ") :])
        assert payload["message"] == "Révolution"
        assert payload["stage"] == "matching"
        assert payload["data"] == {"matches": 2}
        assert set(payload) == {"timestamp", "message", "level", "stage", "data"}


class TestLogStream:
    def test_publish_and_receive(self):
        stream = LogStream()
        queue = stream.subscribe()

        stream.publish(LogEvent("hello"))

        event = queue.get_nowait()
        assert event is not None
        assert event.message == "hello"

    def test_multiple_subscribers(self):
        """Every subscriber sees every event; reading does not consume for others."""
        stream = LogStream()
        q1 = stream.subscribe()
        q2 = stream.subscribe()

        stream.publish(LogEvent("one"))

        assert q1.get_nowait().message == "one"
        assert q2.get_nowait().message == "one"

    def test_late_subscriber_gets_no_replay(self):
        stream = LogStream()
        stream.publish(LogEvent("before"))
        queue = stream.subscribe()
        stream.publish(LogEvent("after"))

        assert queue.get_nowait().message == "after"
        assert queue.empty()

    def test_unsubscribe(self):
        stream = LogStream()
        queue = stream.subscribe()
        stream.unsubscribe(queue)

        stream.publish(LogEvent("ignored"))

        assert queue.empty()
        assert stream.has_subscribers is False

    def test_unsubscribe_unknown_queue_is_noop(self):
        stream = LogStream()
        other = LogStream().subscribe()
        stream.unsubscribe(other)

    def test_full_queue_drops_without_blocking(self):
        """A slow consumer loses events; publishing never blocks."""
        stream = LogStream(maxsize=2)
        slow = stream.subscribe()
        for i in range(5):
            stream.publish(LogEvent(f"e{i}"))

        assert slow.qsize() == 2
        assert slow.get_nowait().message == "e0"

    def test_close_sends_sentinel(self):
        stream = LogStream()
        queue = stream.subscribe()

        stream.close()

        assert queue.get_nowait() is None


class TestPipelineLog:
    def test_emit_publishes_and_logs(self, caplog):
        stream = LogStream()
        queue = stream.subscribe()
        log = PipelineLog(stream)

        with caplog.at_level(logging.INFO, logger="translationmatcher.pipeline.events"):
            log.warning("File skipped", stage="source", path="x.pdf")

        event = queue.get_nowait()
        assert event.level == "warning"
        assert event.data == {"path": "x.pdf"}
        assert "[source] File skipped" in caplog.text
