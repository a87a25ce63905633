"""Tests for the terminal session."""

from storageroom.models import DeploymentEvent, EventLevel, EventType
from storageroom.session import TerminalSession


def test_log_appends_lines_with_ids():
    session = TerminalSession()

    first = session.log("one")
    second = session.log("two", EventLevel.SUCCESS, "CDK Deploy")

    assert [line.id for line in session.lines] == ["log-1", "log-2"]
    assert first.level == EventLevel.INFO
    assert second.source == "CDK Deploy"
    assert not session.is_open


def test_error_and_command_lines_open_the_session():
    session = TerminalSession()
    session.log("info")
    assert not session.is_open

    session.log("failed", EventLevel.ERROR)
    assert session.is_open

    session.close()
    session.log("npx cdk deploy", EventLevel.COMMAND)
    assert session.is_open


def test_subscribe_and_unsubscribe():
    session = TerminalSession()
    seen = []
    unsubscribe = session.subscribe(seen.append)

    session.log("a")
    unsubscribe()
    session.log("b")
    unsubscribe()

    assert [line.message for line in seen] == ["a"]
    assert len(session.lines) == 2


def test_log_event_expands_hints():
    session = TerminalSession()
    event = DeploymentEvent(
        "CDK Bootstrap Required",
        EventLevel.WARN,
        type=EventType.ERROR_INTELLIGENCE,
        title="CDK Bootstrap Required",
        suggestion="Bootstrap the environment.",
        command="npx cdk bootstrap aws://123456789012/us-east-1",
    )

    session.log_event(event, "CDK Deploy")

    assert [(line.level, line.message) for line in session.lines] == [
        (EventLevel.WARN, "Hint: CDK Bootstrap Required"),
        (EventLevel.WARN, "   Bootstrap the environment."),
        (EventLevel.COMMAND, "   Fix: npx cdk bootstrap aws://123456789012/us-east-1"),
    ]


def test_log_event_plain():
    session = TerminalSession()
    session.log_event(DeploymentEvent("Deploying...", EventLevel.INFO))

    assert session.lines[0].message == "Deploying..."


def test_last_error():
    session = TerminalSession()
    assert session.last_error is None

    session.log("first", EventLevel.ERROR)
    session.log("second", EventLevel.ERROR)
    session.log("later info")

    assert session.last_error == "second"
