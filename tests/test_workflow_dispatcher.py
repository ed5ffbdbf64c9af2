from unittest.mock import MagicMock

import pytest

from crm_intake.services.result import RESUME_FAILED, Result
from crm_intake.services.workflow_dispatcher import (
    START_OVER_TEXT,
    HookNotFoundError,
    LocalWorkflowHost,
    WorkflowDispatcher,
    workflow_token,
)


class LateHost(LocalWorkflowHost):
    """Registers its hook only after a number of failed resumes."""

    def __init__(self, handler, misses):
        super().__init__(handler)
        self.misses = misses
        self.resume_calls = 0

    def resume(self, token, event):
        self.resume_calls += 1
        if self.resume_calls <= self.misses:
            raise HookNotFoundError(token)
        return super().resume(token, event)


@pytest.fixture
def handler():
    return MagicMock(return_value=Result.success("handled"))


@pytest.fixture
def sleeps():
    return []


def dispatcher_for(host, chat, sleeps, **kwargs):
    return WorkflowDispatcher(host, chat, max_attempts=3, backoff_ms=300, settle_ms=500, sleep=sleeps.append, **kwargs)


class TestWorkflowToken:
    def test_token_per_chat_and_user(self):
        assert workflow_token((100, 7)) == "chat-100-user-7"


class TestDeliver:
    def test_starts_run_and_resumes(self, handler, chat, events, sleeps):
        host = LocalWorkflowHost(handler)
        event = events.forward("Hi")

        result = dispatcher_for(host, chat, sleeps).deliver(event)

        assert result.value == "handled"
        assert host.is_running("chat-100-user-7")
        handler.assert_called_once_with(event)
        assert sleeps == []

    def test_existing_run_reused(self, handler, chat, events, sleeps):
        host = LocalWorkflowHost(handler)
        dispatcher = dispatcher_for(host, chat, sleeps)
        dispatcher.deliver(events.forward("one"))
        run_id = host._runs["chat-100-user-7"]
        dispatcher.deliver(events.forward("two"))
        assert host._runs["chat-100-user-7"] == run_id

    def test_retries_until_hook_registered(self, handler, chat, events, sleeps):
        host = LateHost(handler, misses=2)

        result = dispatcher_for(host, chat, sleeps).deliver(events.text("hello"))

        assert result.ok
        assert host.resume_calls == 3
        assert sleeps == [0.3, 0.3]
        assert chat.sent == []

    def test_gives_up_and_asks_to_start_over(self, handler, chat, events, sleeps):
        host = LateHost(handler, misses=10)

        result = dispatcher_for(host, chat, sleeps).deliver(events.text("hello"))

        assert result.error_code == RESUME_FAILED
        assert host.resume_calls == 3
        assert sleeps == [0.3, 0.3]
        assert chat.sent[-1]["text"] == START_OVER_TEXT
        handler.assert_not_called()


class TestRestart:
    def test_start_command_replaces_run(self, handler, chat, events, sleeps):
        host = LocalWorkflowHost(handler)
        dispatcher = dispatcher_for(host, chat, sleeps)
        dispatcher.deliver(events.text("hi"))
        old_run = host._runs["chat-100-user-7"]

        dispatcher.deliver(events.command("start"))

        assert host._runs["chat-100-user-7"] != old_run
        assert sleeps == [0.5]

    def test_start_without_run_cancels_then_starts(self, handler, chat, events, sleeps):
        host = MagicMock(wraps=LocalWorkflowHost(handler))
        dispatcher = dispatcher_for(host, chat, sleeps)

        dispatcher.deliver(events.command("start"))

        host.cancel.assert_called_once_with("chat-100-user-7")
        host.start.assert_called_once_with("chat-100-user-7")
        assert sleeps == [0.5, 0.5]

    def test_terminate_unknown_token(self, handler):
        with pytest.raises(HookNotFoundError):
            LocalWorkflowHost(handler).terminate("chat-1-user-1")

    def test_cancel_is_idempotent(self, handler):
        host = LocalWorkflowHost(handler)
        assert host.cancel("chat-1-user-1") is True
        assert host.is_running("chat-1-user-1") is False


class TestWithEngine:
    def test_events_reach_the_engine(self, engine, chat, events, store, sleeps):
        dispatcher = dispatcher_for(LocalWorkflowHost(engine.handle), chat, sleeps)
        result = dispatcher.deliver(events.forward("Hi"))
        assert result.ok
        assert store.get((100, 7)).state_type == "gathering_messages"
