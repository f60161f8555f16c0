"""Backend client capability.

The orchestrator only depends on the :class:`GenerationClient` protocol:
an object that can establish a session, run an *imagine* job and run a
*custom* follow-up action, each resolving to a
:class:`~mjbridge.core.session.SessionResult` after an unpredictable delay.

:class:`ProxyClient` is the concrete implementation.  It speaks the HTTP API
of a Midjourney proxy service with ``httpx.AsyncClient``:

========  ============================  ================================
Method    Path                          Purpose
========  ============================  ================================
GET       ``/mj/task/list``             Session check on ``init()``
POST      ``/mj/submit/imagine``        Submit a generation job
POST      ``/mj/submit/action``         Submit a follow-up action
GET       ``/mj/task/{id}/fetch``       Poll job status and progress
========  ============================  ================================

:func:`verify_discord_token` is the lightweight identity check used as the
credential pre-flight before any session is attempted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from mjbridge.core.config import BridgeConfig
from mjbridge.core.errors import (
    BackendError,
    ConnectionFailedError,
    CredentialInvalidError,
    JobFailedError,
    JobRejectedError,
)
from mjbridge.core.session import ActionOption, SessionResult

logger = logging.getLogger(__name__)

# Called with (uri, progress_percent) zero or more times while a job runs.
ProgressSink = Callable[[str | None, int | None], None]

_AUTH_ERROR_STATUS_CODES = {401, 403}

# Proxy submit codes that mean the job was accepted.
_ACCEPTED_CODES = {1, 21, 22}

_DONE_STATUSES = {"SUCCESS"}
_FAILED_STATUSES = {"FAILURE", "CANCEL"}


class GenerationClient(Protocol):
    """Asynchronous capability handle to the remote generation backend."""

    async def init(self) -> None: ...

    async def imagine(
        self, prompt: str, loading: ProgressSink | None = None
    ) -> SessionResult | None: ...

    async def custom(
        self,
        msg_id: str,
        flags: int,
        custom_id: str,
        prompt: str | None = None,
        loading: ProgressSink | None = None,
    ) -> SessionResult | None: ...

    async def aclose(self) -> None: ...


def parse_progress(raw: Any) -> int | None:
    """Convert a backend progress value (``"45%"``, ``45``, ``"done"``) to a percentage."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        return max(0, min(100, int(raw)))
    text = str(raw).strip().rstrip("%")
    if text.lower() == "done":
        return 100
    try:
        return max(0, min(100, int(float(text))))
    except ValueError:
        return None


def task_to_result(task: dict[str, Any]) -> SessionResult:
    """Build a :class:`SessionResult` from a proxy task document.

    Buttons without a text label (reroll, pan arrows) are labelled by their
    emoji so that queries such as ``"🔄"`` resolve against them.
    """
    actions = tuple(
        ActionOption(
            label=button.get("label") or button.get("emoji") or "",
            token=button["customId"],
        )
        for button in task.get("buttons") or []
        if button.get("customId")
    )
    properties = task.get("properties") or {}
    try:
        flags = int(properties.get("flags") or 0)
    except (TypeError, ValueError):
        flags = 0

    progress = parse_progress(task.get("progress"))
    if task.get("status") in _DONE_STATUSES and progress is None:
        progress = 100

    return SessionResult(
        id=str(task["id"]),
        prompt=task.get("prompt") or task.get("promptEn") or "",
        uri=task.get("imageUrl"),
        progress=progress,
        flags=flags,
        actions=actions,
    )


async def verify_discord_token(
    token: str,
    api_url: str,
    *,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Check that *token* is accepted by the identity endpoint.

    Args:
        token: Authentication token to verify.
        api_url: Base URL of the identity API (``.../api/v9``).
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject a mock).

    Raises:
        CredentialInvalidError: Token missing, or rejected with 401/403.
        ConnectionFailedError: The check could not be completed.
    """
    if not token:
        raise CredentialInvalidError("missing credentials")

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(
                f"{api_url.rstrip('/')}/users/@me",
                headers={"Authorization": token},
            )
    except httpx.HTTPError as exc:
        raise ConnectionFailedError(f"credential check failed: {exc}") from exc

    if response.status_code in _AUTH_ERROR_STATUS_CODES:
        raise CredentialInvalidError()
    if response.is_error:
        raise ConnectionFailedError(
            f"credential check failed: HTTP {response.status_code}"
        )

    user = response.json()
    logger.info("Credentials verified for user '%s'.", user.get("username", "?"))


class ProxyClient:
    """``GenerationClient`` backed by a Midjourney proxy HTTP API.

    Jobs are submitted, then polled every ``poll_interval`` seconds until
    they succeed or fail.  Progress changes are forwarded to the optional
    ``loading`` sink.

    Usage::

        client = ProxyClient(config)
        await client.init()
        result = await client.imagine("a cat")
        await client.aclose()
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if config.backend_secret:
            headers["mj-api-secret"] = config.backend_secret

        self._account_filter = {
            key: value
            for key, value in (("guildId", config.server_id), ("channelId", config.channel_id))
            if value
        }
        self._poll_interval = config.poll_interval
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=config.backend_url.rstrip("/"),
            timeout=config.request_timeout,
            headers=headers,
            transport=transport,
        )

    async def init(self) -> None:
        """Verify that the proxy answers.

        Raises:
            ConnectionFailedError: The proxy is unreachable or rejects us.
        """
        try:
            response = await self._client.get("/mj/task/list")
        except httpx.HTTPError as exc:
            raise ConnectionFailedError(f"backend unreachable: {exc}") from exc
        if response.is_error:
            raise ConnectionFailedError(f"backend rejected session: HTTP {response.status_code}")

    async def imagine(
        self, prompt: str, loading: ProgressSink | None = None
    ) -> SessionResult | None:
        task_id = await self._submit("/mj/submit/imagine", {"prompt": prompt})
        return await self._wait(task_id, loading)

    async def custom(
        self,
        msg_id: str,
        flags: int,
        custom_id: str,
        prompt: str | None = None,
        loading: ProgressSink | None = None,
    ) -> SessionResult | None:
        payload: dict[str, Any] = {"taskId": msg_id, "customId": custom_id, "flags": flags}
        if prompt:
            payload["prompt"] = prompt
        task_id = await self._submit("/mj/submit/action", payload)
        return await self._wait(task_id, loading)

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- Internals ----------------------------------------------------------

    async def _submit(self, path: str, payload: dict[str, Any]) -> str:
        """Submit a job and return its task id.

        The job is pinned to the configured server and channel through the
        proxy's ``accountFilter`` when either is set.

        Raises:
            JobRejectedError: The proxy refused the job.
            BackendError: The proxy could not be reached.
        """
        if self._account_filter:
            payload = {**payload, "accountFilter": dict(self._account_filter)}
        data = await self._request("POST", path, json=payload)

        if data.get("code") not in _ACCEPTED_CODES or not data.get("result"):
            raise JobRejectedError(data.get("description") or f"submit rejected: {data}")

        task_id = str(data["result"])
        logger.info("Submitted job %s via %s.", task_id, path)
        return task_id

    async def _wait(self, task_id: str, loading: ProgressSink | None) -> SessionResult | None:
        """Poll *task_id* until it finishes."""
        last_progress: int | None = None

        while True:
            task = await self._request("GET", f"/mj/task/{task_id}/fetch")
            if not task:
                return None

            status = task.get("status")
            if status in _FAILED_STATUSES:
                raise JobFailedError(task.get("failReason") or f"job {task_id} failed", task_id)
            if status in _DONE_STATUSES:
                if not task.get("id"):
                    raise BackendError(f"job {task_id} finished without an id")
                return task_to_result(task)

            progress = parse_progress(task.get("progress"))
            if loading is not None and progress != last_progress:
                loading(task.get("imageUrl"), progress)
            last_progress = progress

            await self._sleep(self._poll_interval)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send one request and decode its JSON body.

        Raises:
            BackendError: Transport failure, error status or a non-JSON body.
        """
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise BackendError(f"backend returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"backend request failed: {exc}") from exc
        except ValueError as exc:
            raise BackendError(f"backend returned invalid JSON: {exc}") from exc
