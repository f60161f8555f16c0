"""Pydantic request and response models for the Midjourney Bridge API.

Request fields are optional at the schema level so that a missing ``prompt``
or ``index`` is answered with 400 by the core rather than 422 by FastAPI.

Models
------
ImagineRequest
    Payload for ``POST /imagine``.
IndexRequest
    Payload for ``POST /upscale`` and ``POST /variation``.
ActionRequest
    Payload for ``POST /action`` (free label query).
ResultResponse
    Shape of every successful generation / action response.
StatusResponse, HealthResponse
    Shapes of ``GET /`` and ``GET /health``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImagineRequest(BaseModel):
    """Request body for ``POST /imagine``.

    Attributes:
        prompt: Text prompt for the generation.  Required and non-blank.
    """

    prompt: str | None = Field(
        default=None,
        description="Text prompt for the generation.",
    )


class IndexRequest(BaseModel):
    """Request body for ``POST /upscale`` and ``POST /variation``.

    Attributes:
        index: Grid position of the image to act on (1-4).
    """

    index: int | None = Field(
        default=None,
        description="Image index in the grid (1-4).",
    )


class ActionRequest(BaseModel):
    """Request body for ``POST /action``.

    Attributes:
        label: Label query resolved against the current result's actions.
    """

    label: str | None = Field(
        default=None,
        description="Label query, e.g. 'U2', 'pan_left' or '🔄'.",
    )


class ActionModel(BaseModel):
    """One follow-up action of a result."""

    label: str
    token: str


class ResultResponse(BaseModel):
    """A session result as returned by every generation / action route."""

    id: str
    prompt: str
    uri: str | None = None
    progress: int | None = None
    actions: list[ActionModel] = Field(default_factory=list)


class StatusResponse(BaseModel):
    """Response of ``GET /``."""

    status: str
    message: str
    error: str | None = None


class HealthResponse(BaseModel):
    """Response of ``GET /health``."""

    model_config = ConfigDict(populate_by_name=True)

    ready: bool
    phase: str
    busy: bool
    error: str | None = None
    last_result_summary: dict[str, Any] | None = Field(
        default=None,
        alias="lastResultSummary",
    )
