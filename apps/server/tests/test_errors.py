"""Tests for the event channel."""

import logging

from panelvoice.core.errors import BackendInitFailure, EventChannel, EventKind


def test_emit_reaches_subscribers_and_logs(caplog):
    channel = EventChannel()
    received = []
    channel.subscribe(received.append)

    with caplog.at_level(logging.INFO, logger="panelvoice.core.errors"):
        event = channel.emit(EventKind.SYNTHESIS_FAILURE, sequence_index=2)

    assert received == [event]
    assert event.context == {"sequence_index": 2}
    assert caplog.records[-1].levelno == logging.WARNING
    assert "synthesis_failure" in caplog.records[-1].getMessage()


def test_informational_events_log_at_info(caplog):
    with caplog.at_level(logging.INFO, logger="panelvoice.core.errors"):
        EventChannel().emit(EventKind.DETECTION_EMPTY, width=10)
    assert caplog.records[-1].levelno == logging.INFO


def test_unsubscribe_and_failing_listener():
    channel = EventChannel()
    received = []

    def broken(event):
        raise RuntimeError("listener bug")

    channel.subscribe(broken)
    unsubscribe = channel.subscribe(received.append)
    channel.emit(EventKind.ATTRIBUTION_AMBIGUOUS)
    unsubscribe()
    unsubscribe()
    channel.emit(EventKind.ATTRIBUTION_AMBIGUOUS)
    assert len(received) == 1


def test_backend_init_failure_message():
    error = BackendInitFailure("google", "timed out after 10.0s")
    assert str(error) == "google backend failed to initialize: timed out after 10.0s"
