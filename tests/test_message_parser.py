"""Tests for orchestration/message_parser.py."""

from __future__ import annotations

import pytest

from helpers import SequentialIds
from toolweave.orchestration import message_parser
from toolweave.orchestration.message_parser import MessageParser
from toolweave.orchestration.types import ExecutionMode, TextSegment, ToolInvocation
from toolweave.tools.registry import ToolRegistry


def tools_of(segments) -> list[ToolInvocation]:
    return [segment for segment in segments if isinstance(segment, ToolInvocation)]


# -----------------------------------------------------------------------------
# Tests: Inline Tool Blocks
# -----------------------------------------------------------------------------


class TestInlineBlocks:
    """Tests for single inline tool blocks."""

    def test_text_around_single_tool(self, parser: MessageParser) -> None:
        """Text before and after a tool block becomes trimmed text segments."""
        text = "Let me read it.\n<read_file>\n<path>src/app.py</path>\n</read_file>\nDone."

        segments = parser.parse(text)

        assert segments == [
            TextSegment("Let me read it."),
            ToolInvocation(id="id1", name="read_file", parameters={"path": "src/app.py"}),
            TextSegment("Done."),
        ]

    def test_parameters_are_trimmed_and_first_occurrence_wins(self, parser: MessageParser) -> None:
        segments = parser.parse("<read_file><path>  a.py \n</path><path>b.py</path></read_file>")

        assert tools_of(segments)[0].parameters == {"path": "a.py"}

    def test_tool_id_and_depends_on_are_not_parameters(self, parser: MessageParser) -> None:
        text = (
            "<read_file><path>a.py</path><toolId>read_a</toolId>"
            "<dependsOn>list</dependsOn></read_file>"
        )

        invocation = tools_of(parser.parse(text))[0]

        assert invocation.id == "read_a"
        assert invocation.depends_on == "list"
        assert invocation.parameters == {"path": "a.py"}

    def test_multiple_blocks_outside_wrapper_are_single_mode(self, parser: MessageParser) -> None:
        text = "<read_file><path>a.py</path></read_file>\n<list_files><path>src</path></list_files>"

        invocations = tools_of(parser.parse(text))

        assert [item.name for item in invocations] == ["read_file", "list_files"]
        assert all(item.mode is ExecutionMode.SINGLE for item in invocations)

    def test_unknown_tool_stays_text(self, parser: MessageParser) -> None:
        text = "<delete_everything><path>/</path></delete_everything>"

        assert parser.parse(text) == [TextSegment(text)]

    def test_disabled_tool_stays_text(self, registry: ToolRegistry, ids: SequentialIds) -> None:
        registry.disable("read_file")
        parser = MessageParser(registry, id_factory=ids)

        segments = parser.parse("<read_file><path>a.py</path></read_file>")

        assert tools_of(segments) == []

    def test_unknown_tags_inside_block_are_ignored(self, parser: MessageParser) -> None:
        invocation = tools_of(parser.parse("<read_file><mood>happy</mood><path>a.py</path></read_file>"))[0]

        assert invocation.parameters == {"path": "a.py"}

    def test_parameter_values_are_not_rescanned(self, parser: MessageParser) -> None:
        """Tags inside a parameter value belong to the value."""
        text = "<execute_command><command>echo '<path>x</path>'</command></execute_command>"

        invocation = tools_of(parser.parse(text))[0]

        assert invocation.parameters == {"command": "echo '<path>x</path>'"}

    @pytest.mark.parametrize("text", ["", "   \n\t  "])
    def test_empty_input(self, parser: MessageParser, text: str) -> None:
        assert parser.parse(text) == []

    def test_plain_text(self, parser: MessageParser) -> None:
        assert parser.parse("  just talking  ") == [TextSegment("just talking")]


# -----------------------------------------------------------------------------
# Tests: File Write Content
# -----------------------------------------------------------------------------


class TestWriteContent:
    """The file-write tool keeps literal closing content tags inside its content."""

    def test_literal_close_tag_kept(self, parser: MessageParser) -> None:
        text = (
            "<write_to_file>\n<path>notes.md</path>\n"
            "<content>\nbefore </content> after\n</content>\n"
            "<line_count>1</line_count>\n</write_to_file>"
        )

        invocation = tools_of(parser.parse(text))[0]

        assert invocation.parameters["content"] == "before </content> after"
        assert invocation.parameters["path"] == "notes.md"
        assert invocation.parameters["line_count"] == "1"

    def test_nested_markup_in_content(self, parser: MessageParser) -> None:
        body = "<doc>\n  <content>inner</content>\n</doc>"
        text = f"<write_to_file><path>a.xml</path><content>\n{body}\n</content></write_to_file>"

        invocation = tools_of(parser.parse(text))[0]

        assert invocation.parameters["content"] == body

    def test_other_tools_use_first_close_tag(self, parser: MessageParser) -> None:
        text = "<insert_content><path>a</path><operations>x</operations><content>one</content> two</content></insert_content>"

        invocation = tools_of(parser.parse(text))[0]

        assert invocation.parameters["content"] == "one"


# -----------------------------------------------------------------------------
# Tests: Partial Streams
# -----------------------------------------------------------------------------


class TestPartialStreams:
    """Input cut off inside a tool block ends with one partial invocation."""

    def test_cut_inside_parameter(self, parser: MessageParser) -> None:
        segments = parser.parse("Reading\n<read_file><path>src/ap")

        assert segments[0] == TextSegment("Reading")
        assert segments[-1].partial is True
        assert segments[-1].parameters == {"path": "src/ap"}

    def test_cut_inside_closing_parameter_tag(self, parser: MessageParser) -> None:
        segments = parser.parse("<read_file><path>src/app.py</pa")

        assert segments[-1].parameters == {"path": "src/app.py"}

    def test_cut_right_after_open_tag(self, parser: MessageParser) -> None:
        segments = parser.parse("<read_file>")

        assert len(segments) == 1
        assert segments[0].partial is True
        assert segments[0].parameters == {}

    def test_partial_write_content_runs_to_end(self, parser: MessageParser) -> None:
        segments = parser.parse("<write_to_file><path>a.txt</path><content>line one\nline tw")

        assert segments[-1].parameters["content"] == "line one\nline tw"

    def test_parse_message_reports_partial(self, parser: MessageParser) -> None:
        message = parser.parse_message("<read_file><path>a")

        assert message.has_partial is True
        assert message.invocations == []

    def test_prefixes_keep_leading_segments(self, registry: ToolRegistry) -> None:
        """Every prefix cut inside a tool yields the full parse's leading segments plus one partial."""
        full = (
            "Intro text\n<read_file><path>a.py</path></read_file>\nMiddle\n"
            "<list_files><path>src</path><recursive>true</recursive></list_files>\nOutro"
        )
        complete = MessageParser(registry, id_factory=SequentialIds()).parse(full)
        tool_positions = [index for index, segment in enumerate(complete) if isinstance(segment, ToolInvocation)]

        for segment_index, (open_tag, close_tag) in zip(
            tool_positions,
            [("<read_file>", "</read_file>"), ("<list_files>", "</list_files>")],
        ):
            start = full.index(open_tag) + len(open_tag)
            stop = full.index(close_tag) + len(close_tag) - 1
            for cut in range(start, stop + 1):
                prefix = full[:cut]
                segments = MessageParser(registry, id_factory=SequentialIds()).parse(prefix)

                assert segments[:-1] == complete[:segment_index], prefix
                assert segments[-1].partial is True, prefix
                assert segments[-1].name == complete[segment_index].name


# -----------------------------------------------------------------------------
# Tests: Batch Wrappers
# -----------------------------------------------------------------------------


class TestBatchWrappers:
    """Tests for multi_tool_use and legacy wrappers."""

    def test_parallel_wrapper(self, parser: MessageParser) -> None:
        text = (
            "I'll read both.\n"
            '<multi_tool_use mode="parallel">\n'
            "<read_file><path>a.py</path><toolId>a</toolId></read_file>\n"
            "<read_file><path>b.py</path><toolId>b</toolId></read_file>\n"
            "</multi_tool_use>\nThen summarize."
        )

        message = parser.parse_message(text)

        assert message.mode is ExecutionMode.PARALLEL
        assert message.segments[0] == TextSegment("I'll read both.")
        assert message.segments[-1] == TextSegment("Then summarize.")
        assert [(item.id, item.mode, item.depends_on) for item in message.invocations] == [
            ("a", ExecutionMode.PARALLEL, None),
            ("b", ExecutionMode.PARALLEL, None),
        ]

    def test_sequential_wrapper_auto_chains(self, parser: MessageParser) -> None:
        text = (
            '<multi_tool_use mode="sequential">'
            "<list_files><path>src</path></list_files>"
            "<read_file><path>src/a.py</path></read_file>"
            "<read_file><path>src/b.py</path></read_file>"
            "</multi_tool_use>"
        )

        invocations = parser.parse_message(text).invocations

        assert [item.id for item in invocations] == ["id1", "id2", "id3"]
        assert [item.depends_on for item in invocations] == [None, "id1", "id2"]

    def test_explicit_dependency_not_overwritten(self, parser: MessageParser) -> None:
        text = (
            "<sequential>"
            "<list_files><path>src</path><toolId>ls</toolId></list_files>"
            "<read_file><path>a.py</path><toolId>a</toolId></read_file>"
            "<read_file><path>b.py</path><toolId>b</toolId><dependsOn>ls</dependsOn></read_file>"
            "</sequential>"
        )

        invocations = parser.parse_message(text).invocations

        assert [item.depends_on for item in invocations] == [None, "ls", "ls"]

    def test_legacy_parallel_wrapper(self, parser: MessageParser) -> None:
        message = parser.parse_message("<parallel><read_file><path>a</path></read_file></parallel>")

        assert message.mode is ExecutionMode.PARALLEL
        assert len(message.invocations) == 1

    def test_single_quotes_and_case(self, parser: MessageParser) -> None:
        text = "<MULTI_TOOL_USE mode = 'Sequential'><read_file><path>a</path></read_file></multi_tool_use>"

        message = parser.parse_message(text)

        assert message.mode is ExecutionMode.SEQUENTIAL
        assert message.invocations[0].mode is ExecutionMode.SEQUENTIAL

    def test_duplicate_ids_regenerated(self, parser: MessageParser) -> None:
        text = (
            '<multi_tool_use mode="sequential">'
            "<read_file><path>a</path><toolId>x</toolId></read_file>"
            "<read_file><path>b</path><toolId>x</toolId></read_file>"
            "</multi_tool_use>"
        )

        message = parser.parse_message(text)

        assert [item.id for item in message.invocations] == ["x", "id1"]
        assert message.invocations[1].depends_on == "x"
        assert any("Duplicate tool id 'x'" in warning for warning in message.warnings)

    def test_only_first_wrapper_honored(self, parser: MessageParser) -> None:
        text = (
            "<parallel><read_file><path>a</path></read_file></parallel>\n"
            "<sequential><read_file><path>b</path></read_file></sequential>"
        )

        message = parser.parse_message(text)

        assert message.mode is ExecutionMode.PARALLEL
        assert len(message.invocations) == 1
        assert isinstance(message.segments[-1], TextSegment)
        assert "<sequential>" in message.segments[-1].content

    def test_unclosed_wrapper_keeps_mode(self, parser: MessageParser) -> None:
        text = (
            '<multi_tool_use mode="parallel">\n'
            "<read_file><path>a.py</path></read_file>\n"
            "<read_file><path>b"
        )

        message = parser.parse_message(text)

        assert message.mode is ExecutionMode.PARALLEL
        assert len(message.invocations) == 1
        assert message.segments[-1].partial is True
        assert message.segments[-1].mode is ExecutionMode.PARALLEL


# -----------------------------------------------------------------------------
# Tests: JSON Precedence
# -----------------------------------------------------------------------------


class TestJsonPrecedence:
    """A valid JSON execution block wins over inline tags."""

    def test_json_block_wins(self, parser: MessageParser) -> None:
        text = (
            "Plan:\n```json\n"
            '{"execution": {"mode": "parallel", "tools": [{"name": "read_file", "toolId": "j1", '
            '"params": {"path": "x.py"}}], "options": {"continueOnError": true}}}\n'
            "```\n<read_file><path>y.py</path></read_file>"
        )

        message = parser.parse_message(text)

        assert message.mode is ExecutionMode.PARALLEL
        assert [item.id for item in message.invocations] == ["j1"]
        assert message.options is not None and message.options.continue_on_error is True
        assert message.segments[0] == TextSegment("Plan:")
        assert message.segments[-1] == TextSegment("<read_file><path>y.py</path></read_file>")

    def test_invalid_json_falls_back_to_inline(self, parser: MessageParser) -> None:
        text = "```json\n{not json}\n```\n<read_file><path>y.py</path></read_file>"

        message = parser.parse_message(text)

        assert [item.parameters for item in message.invocations] == [{"path": "y.py"}]

    def test_deeply_nested_json_falls_back_to_inline(self, parser: MessageParser) -> None:
        """JSON nested past the decoder's recursion limit is skipped like malformed JSON."""
        text = (
            "```json\n{\"x\": " + "[" * 100000 + "]" * 100000 + "}\n```\n"
            "<read_file><path>a.py</path></read_file>"
        )

        message = parser.parse_message(text)

        assert message.mode is ExecutionMode.SINGLE
        assert [item.parameters for item in message.invocations] == [{"path": "a.py"}]
        assert isinstance(message.segments[0], TextSegment)


def test_module_level_parse_uses_default_catalog() -> None:
    segments = message_parser.parse("<list_files><path>src</path></list_files>")

    assert segments[0].name == "list_files"
    assert message_parser.parse_message("hello").segments == [TextSegment("hello")]
