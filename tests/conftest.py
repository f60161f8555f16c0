"""Shared pytest fixtures for Midjourney Bridge tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from mjbridge.core.config import BridgeConfig
from mjbridge.core.connection import ConnectionManager, RetryPolicy
from mjbridge.core.session import ActionOption, SessionResult

GRID_LABELS = ["U1", "U2", "U3", "U4", "🔄", "V1", "V2", "V3", "V4"]
UPSCALE_LABELS = [
    "Upscale (Subtle)",
    "Upscale (Creative)",
    "Vary (Subtle)",
    "Vary (Strong)",
    "Zoom Out 2x",
    "Zoom Out 1.5x",
    "⬅️",
    "➡️",
    "⬆️",
    "⬇️",
    "Animate (High motion)",
    "Animate (Low motion)",
]

# Token fragments the backend uses for each label.
_TOKEN_NAMES = {
    "🔄": "reroll::0",
    "Upscale (Subtle)": "upsample_v6_2x_subtle::1",
    "Upscale (Creative)": "upsample_v6_2x_creative::1",
    "Vary (Subtle)": "low_variation::1",
    "Vary (Strong)": "high_variation::1",
    "Zoom Out 2x": "Outpaint::50::1",
    "Zoom Out 1.5x": "Outpaint::75::1",
    "⬅️": "pan_left::1",
    "➡️": "pan_right::1",
    "⬆️": "pan_up::1",
    "⬇️": "pan_down::1",
    "Animate (High motion)": "animate_high::1",
    "Animate (Low motion)": "animate_low::1",
}


def _token_for(label: str, result_id: str) -> str:
    if label in _TOKEN_NAMES:
        name = _TOKEN_NAMES[label]
    elif label[0] == "U":
        name = f"upsample::{label[1]}"
    else:
        name = f"variation::{label[1]}"
    return f"MJ::JOB::{name}::{result_id}::SOLO"


def build_result(
    result_id: str,
    labels: list[str] | None = None,
    prompt: str = "",
    flags: int = 0,
) -> SessionResult:
    """Build a result whose tokens embed *result_id*."""
    if labels is None:
        labels = GRID_LABELS
    return SessionResult(
        id=result_id,
        prompt=prompt,
        uri=f"https://cdn.test/{result_id}.png",
        progress=100,
        flags=flags,
        actions=tuple(ActionOption(label, _token_for(label, result_id)) for label in labels),
    )


class FakeClient:
    """Scripted ``GenerationClient``.

    Each imagine/custom call pops the next item of ``results``: a
    ``SessionResult`` or ``None`` is returned, an exception is raised.
    """

    def __init__(self, results: list | None = None, init_error: Exception | None = None):
        self.results = list(results or [])
        self.init_error = init_error
        self.calls: list[tuple[str, dict]] = []
        self.init_calls = 0
        self.closed = False
        self.delay = 0.0
        self.gate: asyncio.Event | None = None

    async def init(self) -> None:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error

    async def imagine(self, prompt, loading=None):
        self.calls.append(("imagine", {"prompt": prompt}))
        return await self._next(loading)

    async def custom(self, msg_id, flags, custom_id, prompt=None, loading=None):
        self.calls.append(
            (
                "custom",
                {"msg_id": msg_id, "flags": flags, "custom_id": custom_id, "prompt": prompt},
            )
        )
        return await self._next(loading)

    async def aclose(self) -> None:
        self.closed = True

    async def _next(self, loading):
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if loading is not None:
            loading("https://cdn.test/partial.webp", 50)
        item = self.results.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


async def _accept(config: BridgeConfig) -> None:
    """Credential verifier that accepts everything."""


async def _no_sleep(delay: float) -> None:
    """Retry sleep that returns immediately."""


@pytest.fixture
def test_config() -> BridgeConfig:
    """Create a test configuration that never touches the network.

    Returns:
        BridgeConfig instance for testing
    """
    return BridgeConfig(
        _env_file=None,
        server_id="guild",
        channel_id="channel",
        discord_token="token",
        backend_url="http://proxy.test",
        discord_api_url="http://discord.test/api/v9",
        poll_interval=0.01,
        request_timeout=5.0,
        backend_timeout=5.0,
        retry_delay=3.0,
    )


@pytest.fixture
def make_result() -> Callable[..., SessionResult]:
    """Factory for scripted backend results."""
    return build_result


@pytest.fixture
def fake_client() -> FakeClient:
    """Scripted backend client with no results queued."""
    return FakeClient()


@pytest.fixture
def make_connection(test_config: BridgeConfig):
    """Factory for a ConnectionManager wired to a fake client.

    The returned manager is not initialized; tests await ``initialize()``.
    """

    def factory(client: FakeClient, verifier=_accept, **kwargs) -> ConnectionManager:
        kwargs.setdefault("retry_policy", RetryPolicy(max_retries=1, delay=3.0, sleep=_no_sleep))
        return ConnectionManager(
            test_config,
            client_factory=lambda cfg: client,
            verifier=verifier,
            **kwargs,
        )

    return factory


@pytest.fixture
def ready_connection(make_connection, fake_client: FakeClient) -> ConnectionManager:
    """A ConnectionManager in the READY phase holding ``fake_client``.

    Only for synchronous tests; async tests initialize their own manager.
    """
    connection = make_connection(fake_client)
    asyncio.run(connection.initialize())
    assert connection.is_ready()
    return connection


@pytest.fixture
def make_test_client():
    """Factory for a TestClient over the real app with injected state.

    The lifespan handler is not run, so no background connection starts;
    ``app.state`` is populated directly from the given connection.
    """
    from fastapi.testclient import TestClient

    from mjbridge.api.main import app
    from mjbridge.core.orchestrator import SessionOrchestrator

    def factory(connection: ConnectionManager, **kwargs) -> TestClient:
        kwargs.setdefault("timeout", 5.0)
        app.state.connection = connection
        app.state.orchestrator = SessionOrchestrator(connection, **kwargs)
        return TestClient(app)

    return factory


@pytest.fixture
def test_client(make_test_client, ready_connection):
    """TestClient whose backend is ready and scripted by ``fake_client``."""
    return make_test_client(ready_connection)
