"""Tests for the syllable/punctuation weight model.

WHY: The weight model is the fallback for every timing path, so its
numbers must be exact and its layout must always fill the requested
duration with no gaps.

HOW: Syllable counts and weights are checked on hand-picked words;
distribute() is checked for contiguity, coverage, order and determinism.

RULES:
- Weights are compared with pytest.approx
- Layout properties are asserted over several word lists
"""

from __future__ import annotations

import pytest

from narration_sync.core.weights import (
    count_syllables,
    distribute,
    estimate_duration,
    pause_weight,
    word_weight,
)


# ---------------------------------------------------------------------------
# count_syllables
# ---------------------------------------------------------------------------


class TestCountSyllables:

    @pytest.mark.parametrize("word, expected", [
        ("hello", 2),
        ("world", 1),
        ("cake", 1),
        ("banana", 3),
        ("jumped", 1),
        ("beautiful", 3),
        ("yellow", 2),
        ("rhythm", 1),
    ])
    def test_common_words(self, word, expected):
        assert count_syllables(word) == expected

    def test_empty_word_is_zero(self):
        assert count_syllables("") == 0
        assert count_syllables("...") == 0

    def test_two_letter_word_is_one(self):
        assert count_syllables("to") == 1
        assert count_syllables("I") == 1

    def test_any_word_has_at_least_one(self):
        assert count_syllables("brr") == 1
        assert count_syllables("the") == 1

    def test_case_and_punctuation_ignored(self):
        assert count_syllables("Hello!") == count_syllables("hello")


# ---------------------------------------------------------------------------
# word_weight
# ---------------------------------------------------------------------------


class TestWordWeight:

    def test_plain_word_is_syllable_count(self):
        assert word_weight("Hello") == pytest.approx(2.0)

    def test_sentence_end_adds_three(self):
        assert word_weight("world.") - word_weight("world") == pytest.approx(3.0)
        assert word_weight("world!") == pytest.approx(word_weight("world."))
        assert word_weight("world?") == pytest.approx(word_weight("world."))

    def test_clause_adds_two(self):
        assert word_weight("world;") - word_weight("world") == pytest.approx(2.0)
        assert word_weight("world:") - word_weight("world") == pytest.approx(2.0)

    def test_comma_adds_one_and_a_half(self):
        assert word_weight("world,") - word_weight("world") == pytest.approx(1.5)

    def test_sentence_end_outweighs_plain_word(self):
        assert word_weight("Hello") < word_weight("world.")

    def test_closing_quote_does_not_hide_punctuation(self):
        assert pause_weight('said."') == pytest.approx(3.0)
        assert pause_weight("(aside),") == pytest.approx(1.5)

    def test_strongest_mark_wins(self):
        assert pause_weight("really?!") == pytest.approx(3.0)
        assert pause_weight("etc.,") == pytest.approx(3.0)

    def test_long_word_bonus(self):
        # "extraordinary" → 5 syllables, 13 letters
        assert word_weight("extraordinary") == pytest.approx(count_syllables("extraordinary") + 0.5)

    def test_short_word_penalty(self):
        assert word_weight("to") == pytest.approx(0.8)

    def test_floor(self):
        assert word_weight("—") == pytest.approx(0.3)
        assert word_weight("") == pytest.approx(0.3)

    def test_always_positive(self):
        for word in ["a", "I", ".", "x,", "supercalifragilistic!"]:
            assert word_weight(word) >= 0.3


# ---------------------------------------------------------------------------
# distribute
# ---------------------------------------------------------------------------


WORD_LISTS = [
    ["Hello", "world.", "Goodbye", "now."],
    ["one"],
    ["a", "b", "c", "d", "e", "f"],
    ["The", "extraordinary", "cat,", "surprisingly;", "sat", "down!"],
]


class TestDistribute:

    @pytest.mark.parametrize("words", WORD_LISTS)
    def test_contiguous(self, words):
        units = distribute(words, 7.3)
        for prev, nxt in zip(units, units[1:]):
            assert nxt.start_time == prev.end_time

    @pytest.mark.parametrize("words", WORD_LISTS)
    def test_spans_full_duration(self, words):
        units = distribute(words, 7.3)
        assert units[0].start_time == 0.0
        assert units[-1].end_time == 7.3

    @pytest.mark.parametrize("words", WORD_LISTS)
    def test_preserves_text_and_order(self, words):
        units = distribute(words, 3.0)
        assert [u.text for u in units] == words
        assert all(u.end_time > u.start_time for u in units)

    def test_shares_follow_weights(self):
        units = distribute(["Hello", "world."], 6.0)
        total = word_weight("Hello") + word_weight("world.")
        assert units[0].duration == pytest.approx(6.0 * word_weight("Hello") / total)

    def test_offset_and_start_index(self):
        units = distribute(["a", "b"], 2.0, start_index=10, offset=5.0)
        assert units[0].start_time == 5.0
        assert units[-1].end_time == 7.0
        assert [u.global_index for u in units] == [10, 11]

    def test_deterministic(self):
        a = distribute(WORD_LISTS[3], 4.2)
        b = distribute(WORD_LISTS[3], 4.2)
        assert a == b

    def test_empty_list(self):
        assert distribute([], 5.0) == []

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValueError):
            distribute(["a"], 0.0)


class TestEstimateDuration:

    def test_rounds_up(self):
        assert estimate_duration(4, 150.0) == 2.0  # 1.6s → 2s
        assert estimate_duration(150, 150.0) == 60.0

    def test_empty(self):
        assert estimate_duration(0, 150.0) == 0.0
