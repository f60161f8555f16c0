"""Core session and backend-connection logic.

Architecture Overview
---------------------
The core module follows a layered architecture:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - Settings prefixed with MJBRIDGE_ (bare deployment names also accepted)

2. **Backend Layer** (client.py, connection.py):
   - ``GenerationClient`` protocol and the HTTP ``ProxyClient``
   - ``ConnectionManager``: credential pre-flight, session setup, one retry

3. **Session Layer** (session.py, actions.py, orchestrator.py):
   - Immutable ``SessionResult`` values
   - Label table and the action matching rule
   - ``SessionOrchestrator``: serialized generate / action calls

Usage Example
-------------
    from mjbridge.core import ConnectionManager, SessionOrchestrator, config

    connection = ConnectionManager(config)
    await connection.initialize()

    session = SessionOrchestrator(connection)
    result = await session.generate("a cat")
    result = await session.apply_action("U2")
"""

from mjbridge.core.config import BridgeConfig, config
from mjbridge.core.connection import ConnectionManager, ConnectionPhase, RetryPolicy
from mjbridge.core.orchestrator import SessionOrchestrator
from mjbridge.core.session import ActionOption, SessionResult

__all__ = [
    "ActionOption",
    "BridgeConfig",
    "ConnectionManager",
    "ConnectionPhase",
    "RetryPolicy",
    "SessionOrchestrator",
    "SessionResult",
    "config",
]
