"""Unit tests for speech normalization and speakable units."""

import pytest

from voice_orchestrator.text import (
    SpeakableUnitScanner,
    has_open_markup,
    is_raw_streaming_json,
    normalize_for_speech,
)


class TestNormalizeForSpeech:
    """Tests for normalize_for_speech."""

    def test_strips_emphasis(self):
        assert normalize_for_speech("**Hello** _world_") == "Hello world"

    def test_strips_headers_and_bullets(self):
        text = "# Title\n- item one\n- item two"
        assert normalize_for_speech(text) == "Title item one item two"

    def test_keeps_link_text(self):
        assert normalize_for_speech("See [the docs](https://x.y) now") == "See the docs now"

    def test_strips_code(self):
        assert normalize_for_speech("Run `ls` now") == "Run ls now"
        assert normalize_for_speech("Before ```python\nprint(1)\n``` after") == "Before after"

    def test_strips_emoji(self):
        assert normalize_for_speech("Great job! 🎉") == "Great job!"

    def test_collapses_whitespace(self):
        assert normalize_for_speech("  one\n\n two\tthree  ") == "one two three"

    def test_empty(self):
        assert normalize_for_speech("") == ""

    def test_keeps_underscores_inside_words(self):
        assert normalize_for_speech("Set my_var and other_var to one") == "Set my_var and other_var to one"


class TestRawStreamingJson:
    """Tests for the leaked stream framing guard."""

    @pytest.mark.parametrize(
        "chunk",
        [
            'data: {"x": 1}',
            '{"type":"content_block_delta","delta":{}}',
            '{"delta": {"text": "hi"}}',
            '  "content_block_delta"  ',
        ],
    )
    def test_detects_fragments(self, chunk):
        assert is_raw_streaming_json(chunk)

    @pytest.mark.parametrize("chunk", ["Hello there", "", " plus two is", "The data: shows growth"])
    def test_plain_text_passes(self, chunk):
        assert not is_raw_streaming_json(chunk)


class TestSpeakableUnitScanner:
    """Tests for SpeakableUnitScanner."""

    def test_short_reply_flushed_at_end(self):
        """Test a reply below the minimum length is spoken once, on finish."""
        scanner = SpeakableUnitScanner()

        assert scanner.append("Two") == []
        assert scanner.append(" plus two is") == []
        assert scanner.append(" four.") == []
        assert scanner.finish("Two plus two is four.") == ["Two plus two is four."]
        assert scanner.finish() == []

    def test_sentence_emitted_when_next_word_arrives(self):
        scanner = SpeakableUnitScanner()

        units = scanner.append("The weather today is sunny and warm. Tomor")
        assert units == ["The weather today is sunny and warm."]

        assert scanner.append("row it will rain heavily in the afternoon.") == []
        assert scanner.finish() == ["Tomorrow it will rain heavily in the afternoon."]

    def test_short_sentences_are_merged(self):
        scanner = SpeakableUnitScanner()

        units = scanner.append("Yes. I can help with that request today. Sure")
        assert units == ["Yes. I can help with that request today."]

    def test_abbreviation_is_not_a_boundary(self):
        scanner = SpeakableUnitScanner()

        units = scanner.append("I spoke with Dr. Smith about your results yesterday. Next")
        assert units == ["I spoke with Dr. Smith about your results yesterday."]

    def test_example_abbreviation_is_not_a_boundary(self):
        scanner = SpeakableUnitScanner(min_chars=5)

        units = scanner.append("Pick a fruit, e.g. apples or pears. Then")
        assert units == ["Pick a fruit, e.g. apples or pears."]

    def test_length_cap_cuts_at_last_space(self):
        scanner = SpeakableUnitScanner(min_chars=30, max_chars=50)

        units = scanner.append("one two three four five six seven eight nine ten eleven twelve")
        assert units == ["one two three four five six seven eight nine ten"]
        assert scanner.finish() == ["eleven twelve"]

    def test_raw_fragment_dropped(self):
        scanner = SpeakableUnitScanner()

        assert scanner.append('data: {"delta": "x"}') == []
        assert scanner.raw_text == ""

    def test_units_concatenate_to_normalized_reply(self):
        """Test units come out in order with no gaps or repeats."""
        reply = (
            "Here is the plan for today. First we review the budget in detail! "
            "Then we meet the team at noon, e.g. around lunch. Finally we wrap up?"
        )
        scanner = SpeakableUnitScanner()

        units = []
        for i in range(0, len(reply), 3):
            units.extend(scanner.append(reply[i:i + 3]))
        units.extend(scanner.finish(reply))

        assert len(units) > 1
        assert " ".join(units) == normalize_for_speech(reply)

    def test_markdown_is_not_spoken(self):
        scanner = SpeakableUnitScanner()

        scanner.append("**Sure!** Here is the *plan* for this afternoon.")
        assert scanner.finish() == ["Sure! Here is the plan for this afternoon."]

    def test_reset(self):
        scanner = SpeakableUnitScanner()
        scanner.append("Some text")
        scanner.reset()

        assert scanner.raw_text == ""
        assert scanner.spoken_index == 0
        assert scanner.finish() == []

    def test_snake_case_does_not_shift_later_units(self):
        scanner = SpeakableUnitScanner()

        units = scanner.append("Use the variable my_var in the loop. Then")
        units.extend(scanner.append(" set other_var too."))
        units.extend(scanner.finish())

        assert units == ["Use the variable my_var in the loop.", "Then set other_var too."]
        assert " ".join(units) == scanner.text

    def test_unit_held_while_emphasis_is_open(self):
        """Test no unit is cut before an emphasis marker closes."""
        scanner = SpeakableUnitScanner()

        assert scanner.append("Here is a *really long sentence that we speak. And") == []
        assert scanner.append(" more* text follows here. Next") == [
            "Here is a really long sentence that we speak. And more text follows here."
        ]
        assert scanner.finish() == ["Next"]

    def test_units_concatenate_with_markup_split_across_chunks(self):
        reply = (
            "**Good news!** The _first_ option costs less than the second one. "
            "You can read [the full comparison](https://x.y/compare) online today. "
            "Use `plan_b` only if the *budget* changes later this month."
        )
        scanner = SpeakableUnitScanner()

        units = []
        for i in range(0, len(reply), 4):
            units.extend(scanner.append(reply[i:i + 4]))
        units.extend(scanner.finish(reply))

        assert len(units) > 1
        assert " ".join(units) == normalize_for_speech(reply)

    def test_final_text_does_not_restore_dropped_fragment(self):
        chunks = [
            "Sure thing, here is the answer you need. ",
            '{"delta": {"text": "x"}}',
            " The result is five.",
        ]
        scanner = SpeakableUnitScanner()

        units = []
        for chunk in chunks:
            units.extend(scanner.append(chunk))
        units.extend(scanner.finish("".join(chunks)))

        assert units == ["Sure thing, here is the answer you need.", "The result is five."]
        assert "delta" not in scanner.raw_text
        assert scanner.dropped_fragments == ['{"delta": {"text": "x"}}']

    def test_final_text_extends_stream(self):
        scanner = SpeakableUnitScanner()

        assert scanner.append("Two plus") == []
        assert scanner.finish("Two plus two is four.") == ["Two plus two is four."]
        assert scanner.raw_text == "Two plus two is four."

    def test_final_text_without_stream(self):
        scanner = SpeakableUnitScanner()

        assert scanner.finish("Saved your note for later.") == ["Saved your note for later."]


class TestHasOpenMarkup:
    """Tests for has_open_markup."""

    @pytest.mark.parametrize(
        "text",
        [
            "A *bold claim.",
            "Try _this one.",
            "Run `ls now.",
            "Before ```python\nprint(1)",
            "See [the docs.",
            "See [the docs](https://x.",
        ],
    )
    def test_open(self, text):
        assert has_open_markup(text)

    @pytest.mark.parametrize(
        "text",
        [
            "A *bold* claim.",
            "Set my_var now.",
            "Run `ls` now.",
            "See [the docs](https://x.y) now.",
            "Plain text.",
            "Two * three is six.",
        ],
    )
    def test_closed(self, text):
        assert not has_open_markup(text)
