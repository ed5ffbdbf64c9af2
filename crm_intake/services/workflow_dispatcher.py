"""Delivery of inbound events to a long-lived conversation run.

A hosted run registers its event hook asynchronously, so the first delivery can
race the registration. Resumes are retried a bounded number of times before the
user is asked to start over. A failed resume is never fatal.
"""

import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

from crm_intake.config import settings
from crm_intake.logging_config import get_logger
from crm_intake.schemas.events import CommandEvent, InboundEvent
from crm_intake.schemas.session import SessionKey
from crm_intake.services.result import RESUME_FAILED, Result
from crm_intake.services.telegram_service import ChatClient

logger = get_logger("workflow_dispatcher")

START_OVER_TEXT = "⚠️ Your session is not ready yet. Please start over with /start."


class HookNotFoundError(Exception):
    """No run is listening for this token (yet)."""


def workflow_token(key: SessionKey) -> str:
    return f"chat-{key[0]}-user-{key[1]}"


class WorkflowHost(ABC):
    @abstractmethod
    def is_running(self, token: str) -> bool:
        pass

    @abstractmethod
    def start(self, token: str) -> str:
        """Start a run for token and return its run id."""

    @abstractmethod
    def resume(self, token: str, event: InboundEvent) -> Result:
        """Hand the event to the run. Raises HookNotFoundError when no hook is registered."""

    @abstractmethod
    def terminate(self, token: str) -> bool:
        """Ask the run to stop by itself. Raises HookNotFoundError when there is none."""

    @abstractmethod
    def cancel(self, token: str) -> bool:
        """Force-stop the run."""


class LocalWorkflowHost(WorkflowHost):
    """Runs every conversation in process on one shared engine."""

    def __init__(self, handler: Callable[[InboundEvent], Result]):
        self.handler = handler
        self._lock = threading.Lock()
        self._runs: dict[str, str] = {}

    def is_running(self, token: str) -> bool:
        with self._lock:
            return token in self._runs

    def start(self, token: str) -> str:
        run_id = uuid.uuid4().hex
        with self._lock:
            self._runs[token] = run_id
        logger.info(f"Started run {run_id} for {token}")
        return run_id

    def resume(self, token: str, event: InboundEvent) -> Result:
        if not self.is_running(token):
            raise HookNotFoundError(token)
        return self.handler(event)

    def terminate(self, token: str) -> bool:
        with self._lock:
            run_id = self._runs.pop(token, None)
        if run_id is None:
            raise HookNotFoundError(token)
        logger.info(f"Terminated run {run_id} for {token}")
        return True

    def cancel(self, token: str) -> bool:
        with self._lock:
            run_id = self._runs.pop(token, None)
        if run_id:
            logger.info(f"Cancelled run {run_id} for {token}")
        return True


class WorkflowDispatcher:
    def __init__(
        self,
        host: WorkflowHost,
        chat: ChatClient,
        max_attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        settle_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.host = host
        self.chat = chat
        self.max_attempts = max_attempts or settings.resume_max_attempts
        self.backoff_ms = settings.resume_backoff_ms if backoff_ms is None else backoff_ms
        self.settle_ms = settings.restart_settle_ms if settle_ms is None else settle_ms
        self.sleep = sleep

    def deliver(self, event: InboundEvent) -> Result:
        token = workflow_token(event.key)

        if isinstance(event, CommandEvent) and event.command.lower() == "start":
            self.restart(token)
        elif not self.host.is_running(token):
            self.host.start(token)

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self.host.resume(token, event)
            except HookNotFoundError:
                logger.warning(
                    f"No hook for {token} (attempt {attempt}/{self.max_attempts})",
                    extra={"context": {"event": event.kind}},
                )
                if attempt < self.max_attempts:
                    self.sleep(self.backoff_ms / 1000)

        logger.error(f"Giving up on {token} after {self.max_attempts} attempts")
        self.chat.send_message(event.chat_id, START_OVER_TEXT)
        return Result.failure(f"Could not resume {token}", RESUME_FAILED)

    def restart(self, token: str) -> str:
        """Stop any previous run for token before starting a fresh one."""
        try:
            terminated = self.host.terminate(token)
        except HookNotFoundError:
            terminated = False
        self.sleep(self.settle_ms / 1000)

        if not terminated:
            logger.info(f"Terminate did not reach {token}, cancelling")
            self.host.cancel(token)
            self.sleep(self.settle_ms / 1000)

        return self.host.start(token)
