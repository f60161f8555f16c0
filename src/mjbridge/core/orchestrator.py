"""Generation session orchestration.

This module provides :class:`SessionOrchestrator`, the owner of the single
evolving session of the service.  It runs generations and follow-up actions
against the backend handle held by
:class:`~mjbridge.core.connection.ConnectionManager`.

Key Responsibilities
--------------------
- **One mutation at a time** - every generate / action call runs the whole
  read-resolve-invoke-replace sequence under one ``asyncio.Lock``.  With the
  ``"queue"`` busy policy later callers wait their turn; with ``"reject"``
  they fail fast with :class:`~mjbridge.core.errors.SessionBusyError`.
- **Label resolution** - action queries are resolved against the action set
  of the *current* result only (:func:`~mjbridge.core.actions.match_action`),
  so tokens of superseded results are never replayed.
- **Atomic replacement** - a successful backend reply replaces the current
  result wholesale; a failed or timed-out call leaves it untouched.
- **Bounded calls** - each backend call is bounded by ``timeout`` seconds.

State Machine
-------------
::

    (none) --generate ok--> HasResult
    HasResult --action ok--> HasResult (new result)
    HasResult --action failed--> HasResult (unchanged)
    HasResult --generate ok--> HasResult (replaced, fresh actions)

Read-only accessors (:meth:`SessionOrchestrator.snapshot`,
:meth:`SessionOrchestrator.summary`) never wait for the lock; the value they
return may be superseded immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any, Literal

from mjbridge.core.actions import PRESETS, match_action, preserves_prompt
from mjbridge.core.client import GenerationClient, ProgressSink
from mjbridge.core.connection import ConnectionManager
from mjbridge.core.errors import (
    ActionFailedError,
    ActionNotFoundError,
    BackendError,
    BackendNotReadyError,
    BackendTimeoutError,
    GenerationFailedError,
    InvalidRequestError,
    NoActiveSessionError,
    SessionBusyError,
)
from mjbridge.core.session import SessionResult

logger = logging.getLogger(__name__)


class SessionOrchestrator:
    """Runs generation and follow-up actions against the single session.

    Attributes:
        _connection (ConnectionManager):
            Source of the backend handle and of readiness.
        _timeout (float):
            Upper bound, in seconds, of one backend call.
        _busy_policy (str):
            ``"queue"`` or ``"reject"`` for overlapping mutations.
        _current (SessionResult | None):
            The latest result, replaced wholesale on every success.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        *,
        timeout: float = 600.0,
        busy_policy: Literal["queue", "reject"] = "queue",
    ) -> None:
        self._connection = connection
        self._timeout = timeout
        self._busy_policy = busy_policy
        self._lock = asyncio.Lock()
        self._current: SessionResult | None = None

    # -- Mutations ----------------------------------------------------------

    async def generate(
        self, prompt: str | None, on_progress: ProgressSink | None = None
    ) -> SessionResult:
        """Run an *imagine* job and make its result the current one.

        Args:
            prompt: Non-empty text prompt.
            on_progress: Optional sink called with ``(uri, percent)`` while
                the job runs.

        Returns:
            The new current result, carrying *prompt*.

        Raises:
            InvalidRequestError: *prompt* is missing or blank.
            BackendNotReadyError: The backend is not ready.
            SessionBusyError: Another mutation is running (reject policy).
            BackendTimeoutError: The backend did not answer in time.
            GenerationFailedError: The backend errored or returned nothing.
        """
        if not prompt or not prompt.strip():
            raise InvalidRequestError("prompt is required")
        self._require_ready()

        async with self._mutation():
            client = self._handle()
            logger.info("Generating: %s", prompt)
            try:
                result = await self._bounded(client.imagine(prompt, self._sink(on_progress)))
            except BackendError as exc:
                logger.exception("Generation failed for prompt '%s'.", prompt)
                raise GenerationFailedError(str(exc) or type(exc).__name__) from exc

            if result is None:
                raise GenerationFailedError("no result from backend")

            self._current = result.with_prompt(prompt)
            logger.info(
                "Generation %s complete with %d action(s).",
                self._current.id,
                len(self._current.actions),
            )
            return self._current

    async def apply_action(
        self, label_query: str, on_progress: ProgressSink | None = None
    ) -> SessionResult:
        """Resolve *label_query* on the current result and run that action.

        Pan actions are sent without a prompt; all others carry the current
        prompt.  The new result inherits the current prompt.

        Raises:
            BackendNotReadyError: The backend is not ready.
            NoActiveSessionError: Nothing has been generated yet.
            ActionNotFoundError: No action of the current result matches.
            SessionBusyError: Another mutation is running (reject policy).
            BackendTimeoutError: The backend did not answer in time.
            ActionFailedError: The backend errored or returned nothing.
        """
        self._require_ready()

        async with self._mutation():
            client = self._handle()
            current = self._current
            if current is None:
                raise NoActiveSessionError()

            action = match_action(current.actions, label_query)
            if action is None:
                raise ActionNotFoundError(label_query)

            prompt = current.prompt if preserves_prompt(action) else None
            logger.info("Applying '%s' (%s) to %s.", action.label, label_query, current.id)
            try:
                result = await self._bounded(
                    client.custom(
                        msg_id=current.id,
                        flags=current.flags,
                        custom_id=action.token,
                        prompt=prompt,
                        loading=self._sink(on_progress),
                    )
                )
            except BackendError as exc:
                logger.exception("Action '%s' failed on %s.", action.label, current.id)
                raise ActionFailedError(str(exc) or type(exc).__name__) from exc

            if result is None:
                raise ActionFailedError("no result from backend")

            self._current = result.with_prompt(current.prompt)
            logger.info("Action '%s' produced %s.", action.label, self._current.id)
            return self._current

    async def run_preset(
        self, name: str, index: int | None = None, on_progress: ProgressSink | None = None
    ) -> SessionResult:
        """Run the named preset from :data:`~mjbridge.core.actions.PRESETS`."""
        preset = PRESETS.get(name)
        if preset is None:
            raise InvalidRequestError(f"unknown action preset: {name}")
        return await self.apply_action(preset.label_query(index), on_progress)

    # -- Read-only accessors ------------------------------------------------

    def snapshot(self) -> SessionResult | None:
        """The current result, or ``None`` before the first generation."""
        return self._current

    def summary(self) -> dict[str, Any] | None:
        """Summary of the current result for health reporting."""
        current = self._current
        return current.summary() if current is not None else None

    @property
    def is_busy(self) -> bool:
        """Whether a mutation is in flight."""
        return self._lock.locked()

    # -- Internals ----------------------------------------------------------

    def _require_ready(self) -> None:
        if not self._connection.is_ready():
            raise BackendNotReadyError(
                self._connection.last_failure() or "backend client is not ready"
            )

    def _handle(self) -> GenerationClient:
        # Readiness may have changed while waiting for the lock.
        self._require_ready()
        return self._connection.get_handle()

    @asynccontextmanager
    async def _mutation(self) -> AsyncIterator[None]:
        if self._busy_policy == "reject" and self._lock.locked():
            raise SessionBusyError()
        async with self._lock:
            yield

    async def _bounded(self, call: Awaitable[SessionResult | None]) -> SessionResult | None:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Backend call exceeded %.1fs.", self._timeout)
            raise BackendTimeoutError(self._timeout) from exc

    @staticmethod
    def _sink(on_progress: ProgressSink | None) -> ProgressSink:
        def loading(uri: str | None, progress: int | None) -> None:
            logger.info("Loading: %s Progress: %s", uri, progress)
            if on_progress is not None:
                on_progress(uri, progress)

        return loading
