"""Reassembly of index-addressed tool-call deltas.

Chat-completion streams split each tool call across many chunks. Every
fragment names the ``index`` of the call it belongs to and may carry any of
``id``, ``function.name`` and a piece of ``function.arguments``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .types import ToolCall

__all__ = ["ToolCallAggregator", "aggregate_tool_calls"]

LOGGER = logging.getLogger(__name__)


class ToolCallAggregator:
    """Merges tool-call fragments for a single model call.

    Build one aggregator per round; it holds no state beyond the stream it
    was fed.

    Example:
        aggregator = ToolCallAggregator()
        aggregator.feed({"index": 0, "id": "call1", "function": {"name": "search"}})
        aggregator.feed({"index": 0, "function": {"arguments": '{"q":'}})
        aggregator.feed({"index": 0, "function": {"arguments": '"x"}'}})
        aggregator.finalize()
        # [ToolCall(id="call1", name="search", arguments='{"q":"x"}')]
    """

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def feed(self, fragment: Mapping[str, Any]) -> None:
        """Merge one ``delta.tool_calls[]`` entry."""
        if not isinstance(fragment, Mapping):
            LOGGER.debug("Ignoring non-mapping tool call fragment: %r", fragment)
            return
        raw_index = fragment.get("index", 0)
        if isinstance(raw_index, bool) or not isinstance(raw_index, int):
            LOGGER.debug("Ignoring tool call fragment with index %r", raw_index)
            return

        entry = self._calls.get(raw_index)
        if entry is None:
            entry = {
                "id": f"toolcall_{raw_index}",
                "type": "function",
                "name": "",
                "arguments": "",
            }
            self._calls[raw_index] = entry

        call_id = fragment.get("id")
        if call_id:
            entry["id"] = str(call_id)

        function = fragment.get("function")
        if isinstance(function, Mapping):
            name = function.get("name")
            if name:
                entry["name"] = str(name)
            arguments = function.get("arguments")
            if arguments:
                entry["arguments"] += str(arguments)

    def feed_many(self, fragments: Iterable[Mapping[str, Any]]) -> None:
        for fragment in fragments:
            self.feed(fragment)

    def finalize(self) -> tuple[ToolCall, ...]:
        """Return complete calls by ascending index, dropping unnamed ones."""
        calls: list[ToolCall] = []
        for index in sorted(self._calls):
            entry = self._calls[index]
            if not entry["name"]:
                LOGGER.debug("Dropping tool call %s at index %d without a name", entry["id"], index)
                continue
            calls.append(ToolCall(id=entry["id"], name=entry["name"], arguments=entry["arguments"]))
        return tuple(calls)


def aggregate_tool_calls(fragments: Iterable[Mapping[str, Any]]) -> tuple[ToolCall, ...]:
    """Aggregate a complete list of fragments in one step."""
    aggregator = ToolCallAggregator()
    aggregator.feed_many(fragments)
    return aggregator.finalize()
