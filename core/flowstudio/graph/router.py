"""
Handle routing - turning upstream results into prompt-slot strings.

normalize_value() is applied whenever a value crosses an edge into a slot
that expects text. HandleRouter records what actually reached each input so
an editor (or a test) can inspect it; it carries no business logic.
"""

import json
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_HANDLE = "system_prompt"
USER_PROMPT_HANDLE = "user_prompt"

# Editor documents name prompt slots in camelCase.
_HANDLE_ALIASES = {
    "systemPrompt": SYSTEM_PROMPT_HANDLE,
    "userPrompt": USER_PROMPT_HANDLE,
}


def canonical_handle(handle: str | None) -> str | None:
    """Map an editor handle name onto the canonical snake_case slot name."""
    if not handle:
        return None
    return _HANDLE_ALIASES.get(handle, handle)


def normalize_value(value: Any) -> str:
    """
    Convert an upstream result into text.

    None becomes "", strings pass through, everything else is rendered as
    indented JSON, falling back to str() when it cannot be serialized
    (cyclic structures, arbitrary objects).
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2)
    except (TypeError, ValueError):
        return str(value)


# (node_id, handle, value) -> None
HandleSink = Callable[[str, str, str], None]


class HandleRouter:
    """
    Records the normalized value delivered to each (node, handle) pair.

    Values live in ``values[node_id][handle]``. An optional ``sink`` mirrors
    every write elsewhere, e.g. GraphModel.set_handle_data so the stored
    node shows the last value that reached it.
    """

    def __init__(self, sink: HandleSink | None = None):
        self.values: dict[str, dict[str, str]] = {}
        self._sink = sink

    def record(self, node_id: str, handle: str, value: str) -> None:
        self.values.setdefault(node_id, {})[handle] = value
        logger.debug(f"Routed {len(value)} chars into {node_id}.{handle}")
        if self._sink is not None:
            self._sink(node_id, handle, value)

    def get(self, node_id: str, handle: str) -> str | None:
        return self.values.get(node_id, {}).get(handle)

    def clear(self) -> None:
        self.values.clear()
