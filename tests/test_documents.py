"""Tests for the reference rich-text document, step maps and decorations."""

from __future__ import annotations

import pytest

from quillmark.documents import (
    AnchorResult,
    Decoration,
    DecorationSet,
    HostDocument,
    RichTextDocument,
    StepMap,
    TextRange,
)


# =============================================================================
# RichTextDocument
# =============================================================================


class TestRichTextDocument:
    """Tests for document construction, reads and replacement."""

    def test_from_text_splits_blocks(self) -> None:
        document = RichTextDocument.from_text("First line.\nSecond line.")
        assert len(document.blocks) == 2
        assert document.text == "First line.\nSecond line."
        assert document.size == len(document.text)
        assert isinstance(document, HostDocument)

    def test_from_runs_keeps_marks(self) -> None:
        document = RichTextDocument.from_runs([[("The ", ()), ("students", ("bold",)), (" goes.", ())]])
        leaves = list(document.iter_text_leaves())
        assert [(leaf.offset, leaf.text) for leaf in leaves] == [(0, "The "), (4, "students"), (12, " goes.")]
        assert leaves[1].marks == frozenset({"bold"})
        assert document.text == "The students goes."

    def test_leaf_offsets_account_for_block_separator(self) -> None:
        document = RichTextDocument.from_text("ab\n\ncd")
        leaves = list(document.iter_text_leaves())
        assert [(leaf.offset, leaf.text, leaf.block_index) for leaf in leaves] == [(0, "ab", 0), (4, "cd", 2)]
        assert leaves[1].end == 6

    def test_text_between_matches_flat_text(self) -> None:
        document = RichTextDocument.from_text("one\ntwo")
        for start in range(document.size + 1):
            for end in range(start, document.size + 1):
                assert document.text_between(start, end) == document.text[start:end]

    @pytest.mark.parametrize("start,end", [(-1, 2), (3, 2), (0, 99)])
    def test_text_between_rejects_bad_ranges(self, start: int, end: int) -> None:
        document = RichTextDocument.from_text("hello")
        with pytest.raises(ValueError):
            document.text_between(start, end)

    def test_replace_within_run(self) -> None:
        document = RichTextDocument.from_text("The students goes to school.")
        step = document.replace_range(4, 17, "students go")
        assert document.text == "The students go to school."
        assert step == StepMap(start=4, old_length=13, new_length=11)
        assert document.version == 1

    def test_replace_across_runs_inherits_start_marks(self) -> None:
        document = RichTextDocument.from_runs([[("The ", ()), ("students", ("bold",)), (" goes.", ())]])
        document.replace_range(4, 17, "pupils go")
        assert document.text == "The pupils go."
        runs = document.blocks[0].runs
        assert [(run.text, run.marks) for run in runs] == [("The pupils go.", frozenset())]

    def test_replace_inside_bold_run_keeps_bold(self) -> None:
        document = RichTextDocument.from_runs([[("a ", ()), ("big", ("bold",)), (" cat", ())]])
        document.replace_range(3, 4, "u")
        assert document.text == "a bug cat"
        assert document.blocks[0].runs[1].text == "bug"
        assert document.blocks[0].runs[1].marks == frozenset({"bold"})

    def test_replace_across_blocks_joins_them(self) -> None:
        document = RichTextDocument.from_text("ab\ncd\nef")
        document.replace_range(1, 4, "X")
        assert document.text == "aXd\nef"
        assert len(document.blocks) == 2

    def test_insert_newline_splits_block(self) -> None:
        document = RichTextDocument.from_text("abcd")
        document.insert(2, "\n")
        assert document.text == "ab\ncd"
        assert len(document.blocks) == 2

    def test_delete(self) -> None:
        document = RichTextDocument.from_text("hello world")
        document.delete(5, 11)
        assert document.text == "hello"

    def test_listeners_fire_after_outermost_transaction(self) -> None:
        document = RichTextDocument.from_text("abcdef")
        seen: list[tuple[StepMap, str]] = []
        document.add_listener(lambda step: seen.append((step, document.text)))

        with document.transaction():
            document.replace_range(0, 1, "A")
            document.replace_range(5, 6, "F")
            assert seen == []

        assert [step for step, _ in seen] == [StepMap(0, 1, 1), StepMap(5, 1, 1)]
        assert seen[0][1] == "AbcdeF"

    def test_failing_listener_does_not_block_others(self) -> None:
        document = RichTextDocument.from_text("abc")
        calls: list[StepMap] = []

        def _broken(step: StepMap) -> None:
            raise RuntimeError("boom")

        document.add_listener(_broken)
        document.add_listener(calls.append)
        document.insert(0, "x")
        assert len(calls) == 1

    def test_remove_listener(self) -> None:
        document = RichTextDocument.from_text("abc")
        calls: list[StepMap] = []
        document.add_listener(calls.append)
        document.remove_listener(calls.append)
        document.remove_listener(calls.append)
        document.insert(0, "x")
        assert calls == []


# =============================================================================
# StepMap
# =============================================================================


class TestStepMap:
    """Tests for mapping positions through a replacement."""

    def test_positions_before_and_after(self) -> None:
        step = StepMap(start=5, old_length=3, new_length=1)
        assert step.map(2) == 2
        assert step.map(10) == 8
        assert step.delta == -2

    def test_insertion_respects_assoc(self) -> None:
        step = StepMap(start=4, old_length=0, new_length=3)
        assert step.map(4, assoc=-1) == 4
        assert step.map(4, assoc=1) == 7

    def test_replaced_range_edges(self) -> None:
        step = StepMap(start=4, old_length=4, new_length=2)
        assert step.map(4) == 4
        assert step.map(8) == 6
        assert step.map(6, assoc=-1) == 4
        assert step.map(6, assoc=1) == 6


# =============================================================================
# Decorations
# =============================================================================


class TestDecorations:
    """Tests for decoration mapping and lookup."""

    def test_mapping_shifts_after_edit(self) -> None:
        decoration = Decoration(10, 15, spec={"suggestion_id": "a"})
        mapped = decoration.map(StepMap(start=0, old_length=0, new_length=3))
        assert mapped is not None
        assert (mapped.start, mapped.end) == (13, 18)
        assert mapped.spec == {"suggestion_id": "a"}

    def test_insertion_at_edges_does_not_grow(self) -> None:
        decoration = Decoration(10, 15)
        assert decoration.map(StepMap(10, 0, 2)) == Decoration(12, 17)
        assert decoration.map(StepMap(15, 0, 2)) == Decoration(10, 15)

    def test_deleting_span_collapses(self) -> None:
        assert Decoration(10, 15).map(StepMap(8, 10, 0)) is None

    def test_set_is_ordered_and_maps(self) -> None:
        decorations = DecorationSet.create(
            [Decoration(20, 25, spec={"suggestion_id": "b"}), Decoration(0, 4, spec={"suggestion_id": "a"})]
        )
        assert [item.start for item in decorations] == [0, 20]

        mapped = decorations.map(StepMap(0, 4, 0))
        assert len(mapped) == 1
        only = mapped.find_by_id("b")
        assert only is not None and (only.start, only.end) == (16, 21)
        assert mapped.find_by_id("a") is None

    def test_find_touching_range(self) -> None:
        decorations = DecorationSet([Decoration(0, 4), Decoration(10, 12), Decoration(20, 30)])
        assert [item.start for item in decorations.find(4, 10)] == [0, 10]
        assert len(decorations.find()) == 3
        assert not DecorationSet.empty()


# =============================================================================
# Ranges
# =============================================================================


class TestTextRange:
    """Tests for TextRange and AnchorResult."""

    def test_normalises_order_and_negative(self) -> None:
        assert TextRange(8, 3).to_tuple() == (3, 8)
        assert TextRange(-4, 2).to_tuple() == (0, 2)

    def test_sequence_protocol(self) -> None:
        start, end = TextRange(2, 5)
        assert (start, end) == (2, 5)
        assert TextRange(2, 5).length == 3
        assert TextRange(3, 3).is_caret

    def test_overlaps(self) -> None:
        assert TextRange(0, 5).overlaps(TextRange(4, 8))
        assert not TextRange(0, 5).overlaps(TextRange(5, 8))

    def test_anchor_result(self) -> None:
        resolved = AnchorResult.resolved(4, 17, fast_path=True)
        assert resolved.found
        assert resolved.to_dict()["range"] == {"start": 4, "end": 17}
        missing = AnchorResult.not_found(candidates=2)
        assert not missing.found
        assert missing.to_dict()["candidates"] == 2
