"""Backend connection lifecycle management.

This module provides :class:`ConnectionManager`, the single owner of the live
capability handle to the remote generation backend.

Key Responsibilities
--------------------
- **Credential pre-flight** - the authentication token is checked against
  the identity endpoint before a session is attempted.  A rejected token is
  terminal: the manager stays in ``FAILED`` and no session is opened.
- **Session establishment** - a client is built by the injected factory and
  its ``init()`` awaited.  On success the handle is stored and the phase
  becomes ``READY``.
- **One-shot retry** - a failed connection is retried exactly once after a
  fixed delay (:class:`RetryPolicy`), re-reading configuration through the
  optional ``config_loader``.  A second failure is terminal.
- **Non-fatal failures** - nothing raised during initialization escapes to
  the host process; the failure is recorded and exposed through
  :meth:`ConnectionManager.last_failure`.

Phases
------
::

    UNINITIALIZED -> VERIFYING -> CONNECTING -> READY
                         |            |
                         +-> FAILED <-+   (retry: FAILED -> VERIFYING ...)

The client handle is present iff the phase is ``CONNECTING`` or ``READY``.
Only one initialization runs at a time.

Usage
-----
::

    manager = ConnectionManager(config)
    manager.start()          # returns immediately

    if manager.is_ready():
        client = manager.get_handle()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import tenacity

from mjbridge.core.client import GenerationClient, ProxyClient, verify_discord_token
from mjbridge.core.config import BridgeConfig
from mjbridge.core.errors import (
    BridgeError,
    ConnectionFailedError,
    CredentialInvalidError,
    NotReadyError,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[[BridgeConfig], GenerationClient]
CredentialVerifier = Callable[[BridgeConfig], Awaitable[None]]


class ConnectionPhase(str, Enum):
    """Lifecycle phase of the backend connection."""

    UNINITIALIZED = "uninitialized"
    VERIFYING = "verifying"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


@dataclass
class RetryPolicy:
    """Scheduled retry after a failed connection.

    Attributes:
        max_retries: Number of retries after the first failure.
        delay: Seconds to wait before each retry.
        sleep: Awaitable sleep used for the delay (tests inject a fake).
    """

    max_retries: int = 1
    delay: float = 3.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)


async def check_credentials(config: BridgeConfig) -> None:
    """Default credential pre-flight against the identity endpoint."""
    await verify_discord_token(
        config.discord_token,
        config.discord_api_url,
        timeout=config.request_timeout,
    )


class ConnectionManager:
    """Owns the lifecycle of the backend capability handle.

    Attributes:
        _config (BridgeConfig):
            Configuration used for the first connection attempt.
        _client_factory:
            Builds a :class:`GenerationClient` from a configuration.
        _verifier:
            Credential pre-flight coroutine function.
        _retry (RetryPolicy):
            Retry policy applied after a failed connection.
        _config_loader:
            Optional callable returning fresh configuration for a retry.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        client_factory: ClientFactory = ProxyClient,
        verifier: CredentialVerifier = check_credentials,
        retry_policy: RetryPolicy | None = None,
        config_loader: Callable[[], BridgeConfig] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._verifier = verifier
        if retry_policy is None:
            retry_policy = RetryPolicy(
                max_retries=1 if config.connect_retry else 0,
                delay=config.retry_delay,
            )
        self._retry = retry_policy
        self._config_loader = config_loader

        self._phase = ConnectionPhase.UNINITIALIZED
        self._last_error: BridgeError | None = None
        self._client: GenerationClient | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    # -- Public interface ---------------------------------------------------

    def start(self) -> asyncio.Task:
        """Schedule :meth:`initialize` in the background and return at once."""
        self._task = asyncio.create_task(self.initialize(), name="backend-connect")
        return self._task

    async def initialize(self) -> None:
        """Verify credentials and establish the backend session.

        Never raises for backend or credential failures; the outcome is
        observable through :meth:`is_ready` and :meth:`last_failure`.
        """
        async with self._lock:
            await self._release_client()
            config = self._config

            retryer = tenacity.AsyncRetrying(
                stop=tenacity.stop_after_attempt(self._retry.max_retries + 1),
                wait=tenacity.wait_fixed(self._retry.delay),
                retry=tenacity.retry_if_exception_type(ConnectionFailedError),
                sleep=self._retry.sleep,
                before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            try:
                async for attempt in retryer:
                    with attempt:
                        retry_number = attempt.retry_state.attempt_number - 1
                        if retry_number and self._config_loader is not None:
                            config = self._config_loader()
                        await self._attempt_recorded(config)
            except CredentialInvalidError as exc:
                logger.error("Backend credentials rejected: %s", exc)
            except ConnectionFailedError:
                logger.error(
                    "Backend connection failed permanently after %d attempt(s); "
                    "restart the service to try again.",
                    self._retry.max_retries + 1,
                )

    def is_ready(self) -> bool:
        """Whether a live backend handle is available."""
        return self._phase is ConnectionPhase.READY and self._client is not None

    def get_handle(self) -> GenerationClient:
        """Return the live backend handle.

        Raises:
            NotReadyError: If the connection is not ready.
        """
        if not self.is_ready():
            raise NotReadyError()
        return self._client

    def last_failure(self) -> str | None:
        """Description of the last failure, set only in the ``FAILED`` phase."""
        return str(self._last_error) if self._last_error is not None else None

    async def close(self) -> None:
        """Cancel a pending initialization and close the handle."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        await self._release_client()
        self._set_phase(ConnectionPhase.UNINITIALIZED)

    # -- Properties ---------------------------------------------------------

    @property
    def phase(self) -> ConnectionPhase:
        """Current lifecycle phase."""
        return self._phase

    @property
    def last_error(self) -> BridgeError | None:
        """The classified error behind :meth:`last_failure`."""
        return self._last_error

    # -- Internals ----------------------------------------------------------

    async def _attempt_recorded(self, config: BridgeConfig) -> None:
        """Run :meth:`_attempt`, recording any failure before re-raising it.

        Failures other than a credential rejection are raised as
        :class:`ConnectionFailedError` so that only they are retried.
        """
        try:
            await self._attempt(config)
        except CredentialInvalidError as exc:
            self._fail(exc)
            raise
        except ConnectionFailedError as exc:
            self._fail(exc)
            logger.exception("Backend connection failed.")
            raise
        except Exception as exc:
            error = ConnectionFailedError(str(exc) or type(exc).__name__)
            self._fail(error)
            logger.exception("Backend connection failed.")
            raise error from exc

    async def _attempt(self, config: BridgeConfig) -> None:
        """Run one verify-then-connect pass; raises on failure."""
        if config.verify_credentials:
            self._set_phase(ConnectionPhase.VERIFYING)
            await self._verifier(config)
        else:
            logger.info("Credential pre-flight disabled, connecting directly.")

        client = self._client_factory(config)
        self._client = client
        self._set_phase(ConnectionPhase.CONNECTING)
        try:
            await client.init()
        except BaseException:
            self._client = None
            await client.aclose()
            raise

        self._set_phase(ConnectionPhase.READY)

    def _set_phase(self, phase: ConnectionPhase) -> None:
        if phase is not ConnectionPhase.FAILED:
            self._last_error = None
        if phase is not self._phase:
            logger.info("Backend connection: %s -> %s.", self._phase.value, phase.value)
        self._phase = phase

    def _fail(self, error: BridgeError) -> None:
        self._client = None
        self._set_phase(ConnectionPhase.FAILED)
        self._last_error = error

    async def _release_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            self._set_phase(ConnectionPhase.UNINITIALIZED)
            await client.aclose()
