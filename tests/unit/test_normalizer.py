"""Tests for the chunk normalizer."""

import pytest

from flightquery.stream.normalizer import (
    NORMALIZATION_RULES,
    normalize,
    normalize_bold_markers,
    normalize_heading_markers,
    normalize_table_rows,
    space_after_punctuation,
    space_before_parenthesis,
    strip_reasoning,
)
from flightquery.stream.types import Channel, ChannelBuffer


# ============================================================
# Reasoning Tests
# ============================================================


class TestStripReasoning:
    """推論スパン除去のテスト"""

    def test_complete_span_removed(self):
        assert strip_reasoning("<think>plan the query</think>Answer") == "Answer"

    def test_span_in_middle(self):
        assert strip_reasoning("Before <think>x</think>after") == "Before after"

    def test_unclosed_span_suppresses_rest(self):
        assert strip_reasoning("Start<think>partial reasoning") == "Start"

    def test_multiple_spans(self):
        text = "<think>a</think>One <think>b</think>Two"
        assert strip_reasoning(text) == "One Two"

    def test_no_span(self):
        assert strip_reasoning("Plain text") == "Plain text"

    def test_closer_without_opener_kept(self):
        assert strip_reasoning("text</think>") == "text</think>"

    def test_span_completed_by_later_chunk(self):
        """途中では抑制され、閉じタグ到着後に本文が現れる"""
        partial = "<think>thinking"
        complete = partial + "</think>Result"

        assert normalize(partial) == ""
        assert normalize(complete) == "Result"


# ============================================================
# Punctuation Tests
# ============================================================


class TestSpaceAfterPunctuation:
    """句読点後の空白補正のテスト"""

    def test_sentence_boundary(self):
        assert space_after_punctuation("Hello.World") == "Hello. World"

    def test_comma(self):
        assert space_after_punctuation("Delhi,Hanoi") == "Delhi, Hanoi"

    def test_already_spaced_unchanged(self):
        assert space_after_punctuation("Hello. World") == "Hello. World"

    def test_punctuation_run_untouched(self):
        assert space_after_punctuation("Wait...really?!Yes") == "Wait... really?! Yes"

    def test_digit_separators_untouched(self):
        assert space_after_punctuation("Total 1,250.50 USD") == "Total 1,250.50 USD"

    def test_closing_paren(self):
        assert space_after_punctuation("(USD)only") == "(USD) only"

    def test_before_inline_closer(self):
        assert space_after_punctuation("**Note.**text") == "**Note.**text"

    def test_image_markup(self):
        assert space_after_punctuation("![logo](a)") == "![logo](a)"

    def test_end_of_text(self):
        assert space_after_punctuation("Done.") == "Done."


class TestSpaceBeforeParenthesis:
    """開き括弧前の空白補正のテスト"""

    def test_inserts_space(self):
        assert space_before_parenthesis("Price(USD)") == "Price (USD)"

    def test_already_spaced(self):
        assert space_before_parenthesis("Price (USD)") == "Price (USD)"

    def test_line_start(self):
        assert space_before_parenthesis("(USD)") == "(USD)"

    def test_link_untouched(self):
        assert space_before_parenthesis("[site](x)") == "[site](x)"

    def test_nested(self):
        assert space_before_parenthesis("((a))") == "((a))"


# ============================================================
# Table Tests
# ============================================================


class TestNormalizeTableRows:
    """テーブル行のテスト"""

    def test_cells_padded(self):
        assert normalize_table_rows("|a|b|") == "| a | b |"

    def test_extra_spaces_collapsed(self):
        assert normalize_table_rows("|   a|b   |") == "| a | b |"

    def test_cell_content_preserved(self):
        assert normalize_table_rows("|Air  India|  ₹ 9,500 |") == "| Air  India | ₹ 9,500 |"

    def test_separator_row(self):
        assert normalize_table_rows("|---|---|") == "| --- | --- |"

    def test_empty_cell(self):
        assert normalize_table_rows("|a||c|") == "| a | | c |"

    def test_unterminated_row(self):
        """閉じていない末尾セルにはパイプを補わない"""
        assert normalize_table_rows("|a|b") == "| a | b"

    def test_escaped_pipe_kept_in_cell(self):
        assert normalize_table_rows(r"|a\|b|c|") == r"| a\|b | c |"

    def test_non_table_lines_untouched(self):
        text = "Intro line\n|a|b|\nOutro"
        assert normalize_table_rows(text) == "Intro line\n| a | b |\nOutro"


# ============================================================
# Heading / Bold Tests
# ============================================================


class TestNormalizeHeadingMarkers:
    """見出し記号のテスト"""

    def test_missing_space(self):
        assert normalize_heading_markers("###Title") == "### Title"

    def test_extra_spaces(self):
        assert normalize_heading_markers("##    Title") == "## Title"

    def test_multiline(self):
        text = "#One\nbody\n##Two"
        assert normalize_heading_markers(text) == "# One\nbody\n## Two"

    def test_bare_marker_untouched(self):
        assert normalize_heading_markers("###") == "###"

    def test_hash_inside_text_untouched(self):
        assert normalize_heading_markers("Flight #42") == "Flight #42"


class TestNormalizeBoldMarkers:
    """太字記号のテスト"""

    def test_pads_both_sides(self):
        assert normalize_bold_markers("This is**bold**text") == "This is **bold** text"

    def test_collapses_extra_spaces(self):
        assert normalize_bold_markers("a   **b**   c") == "a **b** c"

    def test_line_start(self):
        assert normalize_bold_markers("**Summary:**cheapest") == "**Summary:** cheapest"

    def test_closer_before_punctuation(self):
        assert normalize_bold_markers("see **this**.") == "see **this**."

    def test_opener_after_paren(self):
        assert normalize_bold_markers("(**note**)") == "(**note**)"

    def test_unclosed_opener(self):
        """閉じていない開始記号も前側の空白は補正する"""
        assert normalize_bold_markers("Cheapest**Air Ind") == "Cheapest **Air Ind"

    def test_pairs_are_per_line(self):
        text = "a**b**c\n**d**e"
        assert normalize_bold_markers(text) == "a **b** c\n**d** e"


# ============================================================
# Pipeline Tests
# ============================================================


class TestNormalize:
    """パイプライン全体のテスト"""

    def test_rule_order(self):
        assert NORMALIZATION_RULES[0] is strip_reasoning
        assert len(NORMALIZATION_RULES) == 6

    def test_combined(self):
        raw = "<think>sql?</think>###Cheapest\nPrice(INR)is low.Book**now**today"
        expected = "### Cheapest\nPrice (INR) is low. Book **now** today"
        assert normalize(raw) == expected

    def test_empty(self):
        assert normalize("") == ""

    @pytest.mark.parametrize("text", [
        "Hello.World(test)**bold**next",
        "|a|b|\n###Head\n---\n✈️ Flight A,cheap.Book",
        "Total:1,250.50.Next(see**note**)",
        "Wait...really?!Yes**x**.",
        "<think>hidden</think>Visible.Text",
        "Unclosed**bold and |cell",
    ])
    def test_idempotent(self, text):
        once = normalize(text)
        assert normalize(once) == once

    @pytest.mark.parametrize("text", [
        "Hello.World(test)**bold**next",
        "|a|b|\n###Head",
        "Wait...really?!Yes",
    ])
    def test_each_rule_idempotent(self, text):
        for rule in NORMALIZATION_RULES:
            once = rule(text)
            assert rule(once) == once

    def test_chunk_boundary_independence(self):
        """チャンクの分け方に関わらず最終結果は同じ"""
        full = "<think>x</think>###Title\n|From|To|\n|DEL|HAN|\nCheapest is**Air India**.Book now(today)."
        expected = normalize(full)

        for size in (1, 2, 3, 7, len(full)):
            buffer = ChannelBuffer(Channel.ANSWER, normalize)
            for start in range(0, len(full), size):
                buffer.append(full[start:start + size])
            assert buffer.rendered == expected
