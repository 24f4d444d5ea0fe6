"""Message parser for assistant responses.

Recovers tool invocations from free-form model output. Two grammars are
accepted and normalized to :class:`~toolweave.orchestration.types.ToolInvocation`:

* Inline tags: ``<read_file><path>src/app.py</path></read_file>``, optionally
  grouped in ``<multi_tool_use mode="parallel">`` (or the legacy
  ``<parallel>`` / ``<sequential>``) wrappers and carrying ``<toolId>`` and
  ``<dependsOn>`` children.
* Fenced JSON execution blocks (see :mod:`toolweave.orchestration.json_block`),
  which take precedence over inline tags.

Parsing is pure and total: malformed input degrades to text, and input cut
off inside a tool block yields a trailing ``partial`` invocation.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from ..tools.registry import RESERVED_TAGS, WRITE_FILE_TOOL, ToolRegistry, default_registry
from .dependency_resolver import chain_sequential, regenerate_duplicate_ids
from .json_block import find_execution_block
from .types import (
    ContentSegment,
    ExecutionMode,
    ParsedMessage,
    TextSegment,
    ToolInvocation,
    new_invocation_id,
)

__all__ = [
    "MessageParser",
    "BATCH_WRAPPER_RE",
    "parse",
    "parse_message",
]

LOGGER = logging.getLogger(__name__)

# Group "mode" carries the quoted mode; "legacy" the bare wrapper name.
BATCH_WRAPPER_RE = re.compile(
    r"<multi_tool_use\s+mode\s*=\s*([\"'])(?P<mode>parallel|sequential)\1\s*>"
    r"|<(?P<legacy>parallel|sequential)>",
    re.IGNORECASE,
)
_MULTI_TOOL_CLOSE = "</multi_tool_use>"

_CONTENT_PARAM = "content"


@dataclass(slots=True)
class _ScanResult:
    segments: list[ContentSegment] = field(default_factory=list)
    partial: bool = False


class MessageParser:
    """Parses assistant messages against a tool registry.

    Args:
        registry: Tool catalog; its enabled tool names open tool blocks and its
            parameter names are recognized inside them.
        id_factory: Generates ids for invocations that declare none.
    """

    def __init__(
        self,
        registry: ToolRegistry | None = None,
        *,
        id_factory: Callable[[], str] = new_invocation_id,
    ) -> None:
        self._registry = registry if registry is not None else default_registry()
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def parse(self, text: str) -> list[ContentSegment]:
        """Convert ``text`` into ordered text and tool segments."""
        return self.parse_message(text).segments

    def parse_message(self, text: str) -> ParsedMessage:
        """Parse ``text`` and keep batch-level metadata alongside the segments."""
        if not text or not isinstance(text, str):
            return ParsedMessage()

        block = find_execution_block(text, id_factory=self._id_factory)
        if block is not None:
            message = ParsedMessage(mode=block.mode, options=block.options)
            message.warnings.extend(regenerate_duplicate_ids(block.invocations, self._id_factory))
            self._append_text(message.segments, text[: block.start])
            message.segments.extend(block.invocations)
            self._append_text(message.segments, text[block.end :])
            return message

        wrapper = BATCH_WRAPPER_RE.search(text)
        if wrapper is not None:
            return self._parse_batch(text, wrapper)

        scan = self._scan_tools(text, ExecutionMode.SINGLE)
        return ParsedMessage(segments=scan.segments, mode=ExecutionMode.SINGLE)

    # ------------------------------------------------------------------
    # Batch wrappers
    # ------------------------------------------------------------------
    def _parse_batch(self, text: str, wrapper: re.Match[str]) -> ParsedMessage:
        raw_mode = wrapper.group("mode") or wrapper.group("legacy")
        mode = ExecutionMode.coerce(raw_mode)
        close_tag = _MULTI_TOOL_CLOSE if wrapper.group("mode") else f"</{wrapper.group('legacy')}>"

        body_start = wrapper.end()
        close_at = _find_ci(text, close_tag, body_start)
        if close_at < 0:
            # Stream cut before the wrapper closed; keep the batch mode anyway.
            body = _strip_partial_close(text[body_start:], close_tag)
            after = ""
        else:
            body = text[body_start:close_at]
            after = text[close_at + len(close_tag) :]

        message = ParsedMessage(mode=mode)
        self._append_text(message.segments, text[: wrapper.start()])
        scan = self._scan_tools(body, mode)
        invocations = [s for s in scan.segments if isinstance(s, ToolInvocation)]
        message.warnings.extend(regenerate_duplicate_ids(invocations, self._id_factory))
        if mode is ExecutionMode.SEQUENTIAL:
            chain_sequential(invocations)
        message.segments.extend(scan.segments)
        if not scan.partial:
            self._append_text(message.segments, after)
        for warning in message.warnings:
            LOGGER.debug("Parse anomaly: %s", warning)
        return message

    # ------------------------------------------------------------------
    # Tool blocks
    # ------------------------------------------------------------------
    def _scan_tools(self, text: str, mode: ExecutionMode) -> _ScanResult:
        result = _ScanResult()
        opener = self._tool_open_re()
        if opener is None:
            self._append_text(result.segments, text)
            return result

        position = 0
        while True:
            match = opener.search(text, position)
            if match is None:
                self._append_text(result.segments, text[position:])
                return result
            self._append_text(result.segments, text[position : match.start()])

            name = match.group(1)
            close_tag = f"</{name}>"
            close_at = text.find(close_tag, match.end())
            if close_at < 0:
                body = _strip_partial_close(text[match.end() :], close_tag)
                result.segments.append(self._build_invocation(name, body, mode, partial=True))
                result.partial = True
                return result

            body = text[match.end() : close_at]
            result.segments.append(self._build_invocation(name, body, mode, partial=False))
            position = close_at + len(close_tag)

    def _build_invocation(self, name: str, body: str, mode: ExecutionMode, *, partial: bool) -> ToolInvocation:
        values = self._scan_parameters(name, body, partial=partial)
        tool_id = values.pop("toolId", "")
        depends_on = values.pop("dependsOn", "")
        return ToolInvocation(
            id=tool_id or self._id_factory(),
            name=name,
            parameters=values,
            mode=mode,
            partial=partial,
            depends_on=depends_on or None,
        )

    def _scan_parameters(self, tool_name: str, body: str, *, partial: bool) -> dict[str, str]:
        """Extract parameter values, first occurrence of each tag winning."""
        values: dict[str, str] = {}
        opener = self._param_open_re()
        position = 0
        while True:
            match = opener.search(body, position)
            if match is None:
                return values
            param = match.group(1)
            close_tag = f"</{param}>"
            if tool_name == WRITE_FILE_TOOL and param == _CONTENT_PARAM:
                close_at = body.rfind(close_tag, match.end())
            else:
                close_at = body.find(close_tag, match.end())

            if close_at < 0:
                if partial:
                    value = _strip_partial_close(body[match.end() :], close_tag)
                    values.setdefault(param, value.strip())
                    return values
                LOGGER.debug("Ignoring unterminated <%s> inside <%s>", param, tool_name)
                position = match.end()
                continue

            values.setdefault(param, body[match.end() : close_at].strip())
            position = close_at + len(close_tag)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _tool_open_re(self) -> re.Pattern[str] | None:
        return _open_tag_re(tuple(self._registry.list_names()))

    def _param_open_re(self) -> re.Pattern[str]:
        names = tuple(dict.fromkeys((*self._registry.parameter_names(), *RESERVED_TAGS)))
        return _open_tag_re(names)  # type: ignore[return-value]

    @staticmethod
    def _append_text(segments: list[ContentSegment], text: str) -> None:
        content = text.strip()
        if content:
            segments.append(TextSegment(content))


# ----------------------------------------------------------------------
# Module helpers
# ----------------------------------------------------------------------
@functools.lru_cache(maxsize=64)
def _open_tag_re(names: tuple[str, ...]) -> re.Pattern[str] | None:
    if not names:
        return None
    # Longest first so a name never shadows a longer one sharing its prefix.
    ordered = sorted(names, key=len, reverse=True)
    return re.compile("<(" + "|".join(re.escape(name) for name in ordered) + ")>")


def _find_ci(text: str, needle: str, start: int) -> int:
    match = re.compile(re.escape(needle), re.IGNORECASE).search(text, start)
    return match.start() if match else -1


def _strip_partial_close(value: str, close_tag: str) -> str:
    """Drop a closing tag cut off at the end of the stream (``</pa``)."""
    for size in range(min(len(close_tag), len(value)), 0, -1):
        if value[-size:].lower() == close_tag[:size].lower():
            return value[:-size]
    return value


@functools.lru_cache(maxsize=1)
def _default_parser() -> MessageParser:
    return MessageParser(default_registry())


def parse(text: str) -> list[ContentSegment]:
    """Parse ``text`` against the default tool catalog."""
    return _default_parser().parse(text)


def parse_message(text: str) -> ParsedMessage:
    """Parse ``text`` against the default tool catalog, keeping batch metadata."""
    return _default_parser().parse_message(text)
