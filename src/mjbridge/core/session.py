"""Session data model.

A :class:`SessionResult` is one backend reply: the job identifier, the prompt
it was produced from, the artifact URI and the follow-up actions valid for
*that* result only.  Results are immutable; every successful backend call
produces a new instance which supersedes the previous one wholesale.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class ActionOption:
    """A follow-up action offered by the backend.

    Attributes:
        label: Human-readable button label (``"U2"``, ``"Vary (Subtle)"``, ``"🔄"``).
        token: Opaque action token bound to the result that offered it.
    """

    label: str
    token: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "token": self.token}


@dataclass(frozen=True)
class SessionResult:
    """The latest backend response of the active session.

    Attributes:
        id: Backend-assigned job identifier.
        prompt: Prompt that produced this result (inherited for actions).
        uri: Artifact location, ``None`` while a job is still running.
        progress: Completion percentage (0-100), ``None`` if unknown.
        flags: Opaque bitfield the backend needs to replay actions.
        actions: Follow-up actions in backend order.
    """

    id: str
    prompt: str = ""
    uri: str | None = None
    progress: int | None = None
    flags: int = 0
    actions: tuple[ActionOption, ...] = field(default_factory=tuple)

    def with_prompt(self, prompt: str) -> SessionResult:
        """Return a copy carrying *prompt*."""
        return replace(self, prompt=prompt)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the JSON shape returned by the API."""
        return {
            "id": self.id,
            "prompt": self.prompt,
            "uri": self.uri,
            "progress": self.progress,
            "actions": [a.to_dict() for a in self.actions],
        }

    def summary(self) -> dict[str, Any]:
        """Short description used by the health endpoint."""
        return {
            "id": self.id,
            "prompt": self.prompt,
            "uri": self.uri,
            "actions": [a.label for a in self.actions],
        }
