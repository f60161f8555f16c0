"""Action-label table and matching rule.

Follow-up actions are addressed by human-readable queries (``"U2"``,
``"pan_left"``, ``"🔄"``) which are resolved against the action set of the
*current* result.  The HTTP preset routes are nothing more than entries in
:data:`PRESETS`; all of them funnel into one generic action call.

Matching Rule
-------------
:func:`match_action` is the single matching function:

1. Case-insensitive substring containment of the query in each action label,
   scanned in backend order.  The first match wins.
2. If no label matches, the same rule is applied to the action tokens.  The
   backend encodes symbolic names such as ``pan_left`` or ``low_variation``
   in its tokens while the visible label is an arrow or a phrase.

The first-match tie-break is the only ordering rule; the backend's action
order is authoritative.  If the backend ever offers two labels sharing a
prefix (e.g. several reroll-like buttons) the earlier one is always chosen.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from mjbridge.core.errors import InvalidRequestError
from mjbridge.core.session import ActionOption

logger = logging.getLogger(__name__)

# Arrow labels the backend uses for pan buttons.
PAN_LABELS = frozenset({"⬅️", "➡️", "⬆️", "⬇️"})

MIN_INDEX = 1
MAX_INDEX = 4


@dataclass(frozen=True)
class Preset:
    """A named label query.

    Attributes:
        name: Route name, e.g. ``"pan-left"``.
        query: Label query; ``{index}`` is substituted for indexed presets.
        indexed: Whether the preset takes an image index (1-4).
    """

    name: str
    query: str
    indexed: bool = False

    def label_query(self, index: int | None = None) -> str:
        """Build the label query for this preset.

        Raises:
            InvalidRequestError: If an indexed preset gets no index or one
                outside 1-4.
        """
        if not self.indexed:
            return self.query
        if index is None or not MIN_INDEX <= index <= MAX_INDEX:
            raise InvalidRequestError(
                f"index must be between {MIN_INDEX} and {MAX_INDEX}, got {index}"
            )
        return self.query.format(index=index)


PRESETS: dict[str, Preset] = {
    p.name: p
    for p in (
        Preset("upscale", "U{index}", indexed=True),
        Preset("variation", "V{index}", indexed=True),
        Preset("vary-subtle", "low_variation"),
        Preset("vary-strong", "high_variation"),
        Preset("zoom-2x", "Zoom Out 2x"),
        Preset("zoom-1-5x", "Zoom Out 1.5x"),
        Preset("pan-left", "pan_left"),
        Preset("pan-right", "pan_right"),
        Preset("pan-up", "pan_up"),
        Preset("pan-down", "pan_down"),
        Preset("animate-high", "animate_high"),
        Preset("animate-low", "animate_low"),
        Preset("reroll", "🔄"),
    )
}


def match_action(actions: Sequence[ActionOption], query: str) -> ActionOption | None:
    """Resolve *query* against *actions*.

    Args:
        actions: Action set of one result, in backend order.
        query: Label query; matched case-insensitively by containment.

    Returns:
        The first matching action, or ``None`` if nothing matches.
    """
    needle = query.lower()
    if not needle:
        return None

    for action in actions:
        if needle in action.label.lower():
            logger.debug("Query '%s' matched label '%s'.", query, action.label)
            return action

    for action in actions:
        if needle in action.token.lower():
            logger.debug("Query '%s' matched token of '%s'.", query, action.label)
            return action

    return None


def preserves_prompt(action: ActionOption) -> bool:
    """Whether the prompt must be forwarded with *action*.

    Pan actions extend the canvas and do not take a prompt; every other
    action (upscale, variation, reroll, zoom, animate) keeps the content and
    is sent with the current prompt.
    """
    if action.label in PAN_LABELS:
        return False
    return "pan_" not in action.label.lower() and "pan_" not in action.token.lower()
