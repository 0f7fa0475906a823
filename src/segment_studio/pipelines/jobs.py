"""Single-flight, poll-based tracking of long-running episode jobs.

A job is keyed by ``(kind, episode_id)``. Its state moves
``IDLE -> RUNNING -> DONE | FAILED`` and a terminal state is handed to exactly
one poller: :meth:`JobStatusRegistry.read_and_clear` resets it to ``IDLE`` in
the same critical section that reads it.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Protocol

from ..exceptions import JobCancelledError, JobConflictError
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

__all__ = [
    "BackgroundJobRunner",
    "CancellationToken",
    "InMemoryJobStatusRegistry",
    "JobHandle",
    "JobKey",
    "JobKind",
    "JobState",
    "JobStatus",
    "JobStatusRegistry",
    "StartResult",
]


class JobKind(Enum):
    RENDER = "render"
    TRANSCRIBE = "transcribe"

    @property
    def running_label(self) -> str:
        """Word reported to pollers while a job of this kind runs."""
        return "building" if self is JobKind.RENDER else "transcribing"


class JobState(Enum):
    IDLE = auto()
    RUNNING = auto()
    DONE = auto()
    FAILED = auto()

    @property
    def terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED)


class StartResult(Enum):
    ACCEPTED = auto()
    CONFLICT = auto()


@dataclass(frozen=True, slots=True)
class JobKey:
    kind: JobKind
    episode_id: str


@dataclass(frozen=True, slots=True)
class JobStatus:
    state: JobState = JobState.IDLE
    error: str | None = None

    def label(self, kind: JobKind) -> str:
        if self.state is JobState.RUNNING:
            return kind.running_label
        return self.state.name.lower()

    def to_payload(self, kind: JobKind) -> dict[str, str]:
        """Poll response body: ``{"status": ..., "error": ...}``."""
        payload = {"status": self.label(kind)}
        if self.state is JobState.FAILED and self.error:
            payload["error"] = self.error
        return payload


IDLE = JobStatus()


class JobStatusRegistry(Protocol):
    """Keyed single-flight state store; implementations own their synchronization."""

    def try_start(self, key: JobKey) -> StartResult: ...

    def complete(self, key: JobKey) -> None: ...

    def fail(self, key: JobKey, error: str) -> None: ...

    def read_and_clear(self, key: JobKey) -> JobStatus: ...

    def peek(self, key: JobKey) -> JobStatus: ...


class InMemoryJobStatusRegistry:
    """Process-local registry; state does not survive a restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[JobKey, JobStatus] = {}

    def try_start(self, key: JobKey) -> StartResult:
        with self._lock:
            if self._states.get(key, IDLE).state is JobState.RUNNING:
                return StartResult.CONFLICT
            self._states[key] = JobStatus(JobState.RUNNING)
            return StartResult.ACCEPTED

    def complete(self, key: JobKey) -> None:
        self._finish(key, JobStatus(JobState.DONE))

    def fail(self, key: JobKey, error: str) -> None:
        self._finish(key, JobStatus(JobState.FAILED, error=error))

    def read_and_clear(self, key: JobKey) -> JobStatus:
        with self._lock:
            status = self._states.get(key, IDLE)
            if status.state.terminal:
                self._states.pop(key, None)
            return status

    def peek(self, key: JobKey) -> JobStatus:
        with self._lock:
            return self._states.get(key, IDLE)

    def _finish(self, key: JobKey, status: JobStatus) -> None:
        with self._lock:
            current = self._states.get(key, IDLE)
            if current.state is not JobState.RUNNING:
                LOGGER.warning(
                    "Ignoring %s for %s job of episode %s in state %s.",
                    status.state.name,
                    key.kind.value,
                    key.episode_id,
                    current.state.name,
                )
                return
            self._states[key] = status


class CancellationToken:
    """Cooperative cancellation flag checked by job work between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError("Job was cancelled.")


JobWork = Callable[[CancellationToken], None]


@dataclass(slots=True)
class JobHandle:
    """Caller-side handle for a dispatched job."""

    key: JobKey
    token: CancellationToken = field(default_factory=CancellationToken)
    _done: threading.Event = field(default_factory=threading.Event, init=False)

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def done(self) -> bool:
        return self._done.is_set()


class BackgroundJobRunner:
    """Runs job work on daemon threads and records the outcome in a registry."""

    def __init__(self, registry: JobStatusRegistry) -> None:
        self.registry = registry
        self._lock = threading.Lock()
        self._handles: dict[JobKey, JobHandle] = {}

    def submit(self, key: JobKey, work: JobWork) -> JobHandle:
        """Start ``work`` for ``key`` or raise :class:`JobConflictError` if one is running."""
        if self.registry.try_start(key) is StartResult.CONFLICT:
            raise JobConflictError(
                f"A {key.kind.value} job is already {key.kind.running_label} "
                f"for episode {key.episode_id}."
            )
        return self.dispatch(key, work)

    def dispatch(self, key: JobKey, work: JobWork) -> JobHandle:
        """Run ``work`` for a key that was already moved to RUNNING via ``try_start``.

        If the worker thread cannot be started the key is marked FAILED before
        the error propagates.
        """
        handle = JobHandle(key=key)
        with self._lock:
            self._handles[key] = handle
        thread = threading.Thread(
            target=self._execute,
            args=(handle, work),
            name=f"{key.kind.value}-{key.episode_id}",
            daemon=True,
        )
        try:
            thread.start()
        except BaseException as exc:
            self.abandon(key, exc)
            handle._done.set()
            with self._lock:
                if self._handles.get(key) is handle:
                    del self._handles[key]
            raise
        return handle

    def abandon(self, key: JobKey, exc: BaseException) -> None:
        """Mark a key accepted by ``try_start`` as FAILED when no worker will run it."""
        LOGGER.error("Could not start %s job for episode %s: %s", key.kind.value, key.episode_id, exc)
        self.registry.fail(key, str(exc) or exc.__class__.__name__)

    def handle_for(self, key: JobKey) -> JobHandle | None:
        with self._lock:
            return self._handles.get(key)

    def cancel(self, key: JobKey) -> bool:
        """Request cancellation of the running job for ``key``; False if none is known."""
        handle = self.handle_for(key)
        if handle is None or handle.done:
            return False
        handle.cancel()
        return True

    def _execute(self, handle: JobHandle, work: JobWork) -> None:
        key = handle.key
        LOGGER.info("Started %s job for episode %s.", key.kind.value, key.episode_id)
        try:
            work(handle.token)
        except Exception as exc:
            LOGGER.exception("%s job for episode %s failed.", key.kind.value, key.episode_id)
            self.registry.fail(key, str(exc) or exc.__class__.__name__)
        else:
            self.registry.complete(key)
            LOGGER.info("Finished %s job for episode %s.", key.kind.value, key.episode_id)
        finally:
            handle._done.set()
            with self._lock:
                if self._handles.get(key) is handle:
                    del self._handles[key]
