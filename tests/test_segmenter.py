"""Speaker segmentation heuristics and the round-robin fallback."""

import pytest

from debatelens.debate.segmenter import (
    MIN_SPEAKER_CHARS,
    match_speaker,
    round_robin_split,
    segment_speakers,
    split_blocks,
    split_sentences,
)

from conftest import debate_text


class TestMatchSpeaker:
    def test_name_prefix(self):
        assert match_speaker("Alice: I disagree.", ["Bob", "Alice"]) == "Alice"

    def test_prefix_is_case_insensitive(self):
        assert match_speaker("  BOB ; the figures say otherwise", ["Alice", "Bob"]) == "Bob"

    def test_first_name_prefix_for_full_name(self):
        assert match_speaker("Alice: thank you chair", ["Alice Rossi", "Bob Bianchi"]) == "Alice Rossi"

    def test_name_followed_by_delimiter(self):
        assert match_speaker("Moderator hands over to Bob for the reply: go ahead", ["Alice", "Bob"]) == "Bob"

    def test_bare_mention(self):
        assert match_speaker("as bob said earlier, costs matter", ["Alice", "Bob"]) == "Bob"

    def test_no_partial_word_match(self):
        assert match_speaker("Bobby tables went home.", ["Bob"]) is None

    def test_no_match(self):
        assert match_speaker("Costs are rising everywhere.", ["Alice", "Bob"]) is None

    def test_first_listed_participant_wins_tie(self):
        block = "Bob: I think Alice is wrong about costs."
        assert match_speaker(block, ["Alice", "Bob"]) == "Alice"
        assert match_speaker(block, ["Bob", "Alice"]) == "Bob"

    def test_regex_characters_in_names_are_literal(self):
        assert match_speaker("Dr. (J) Smith: evidence first", ["Dr. (J) Smith"]) == "Dr. (J) Smith"


class TestSplitting:
    def test_blocks_split_on_blank_lines_and_sentence_starts(self):
        text = "First paragraph here. Second sentence.\n\n  Another paragraph."
        assert split_blocks(text) == ["First paragraph here.", "Second sentence.", "Another paragraph."]

    def test_accented_capital_starts_a_block(self):
        text = "Alice: Il nucleare costa troppo. È vero che i tempi sono lunghi. e poi?"
        assert split_blocks(text) == [
            "Alice: Il nucleare costa troppo.",
            "È vero che i tempi sono lunghi. e poi?",
        ]

    def test_sentences_keep_terminators(self):
        assert split_sentences("One. Two! Three? four") == ["One.", "Two!", "Three?", "four"]


class TestSegmentSpeakers:
    def test_prefixed_turns_are_attributed(self):
        result = segment_speakers(debate_text(), ["Alice", "Bob"])
        assert list(result) == ["Alice", "Bob"]
        assert result["Alice"].startswith("Alice: Nuclear power")
        assert result["Bob"].startswith("Bob: Renewables")

    def test_unlabelled_blocks_follow_current_speaker(self):
        text = (
            "Alice: Opening statement about energy security and prices.\n\n"
            "It continues with more detail on grid stability and demand.\n\n"
            "Bob: A reply that covers storage, cost curves and deployment speed."
        )
        result = segment_speakers(text, ["Alice", "Bob"])
        assert "grid stability" in result["Alice"]
        assert "grid stability" not in result["Bob"]

    def test_leading_unassigned_text_goes_to_quietest_speaker(self):
        text = (
            "Welcome everyone to tonight's debate on the future of energy policy.\n\n"
            "Alice: A long opening statement about energy security, prices, supply chains "
            "and the reliability of firm capacity in winter peaks.\n\n"
            "Bob: A shorter reply about storage and cost curves overall."
        )
        result = segment_speakers(text, ["Alice", "Bob"])
        assert "Welcome everyone" in result["Bob"]
        assert "Welcome everyone" not in result["Alice"]

    def test_no_names_falls_back_to_round_robin(self):
        text = "First point is made here. Second point follows it. Third point closes. Fourth point ends."
        result = segment_speakers(text, ["Alice", "Bob"])
        assert result == {
            "Alice": "First point is made here. Third point closes.",
            "Bob": "Second point follows it. Fourth point ends.",
        }

    def test_short_attribution_falls_back_to_round_robin(self):
        text = (
            "Alice: A detailed case for nuclear power with costs, timelines and emissions data. "
            "More detail follows on waste storage and safety records over decades. "
            "Bob: No."
        )
        result = segment_speakers(text, ["Alice", "Bob"])
        assert all(len(t) > 0 for t in result.values())
        assert result["Bob"] != "Bob: No."

    def test_duplicate_participants_are_merged(self):
        result = segment_speakers(debate_text(), ["Alice", "Bob", "Alice"])
        assert list(result) == ["Alice", "Bob"]

    def test_requires_participants(self):
        with pytest.raises(ValueError):
            segment_speakers("text", ["  "])

    @pytest.mark.parametrize(
        "text",
        [
            debate_text(),
            "Sentence one is here. Sentence two is here. Sentence three is here. " * 3,
            "Same. " * 40,
            "x" * 120,
            "Words without any punctuation at all just keep flowing on and on " * 2,
        ],
    )
    @pytest.mark.parametrize("participants", [["Alice"], ["Alice", "Bob"], ["A", "B", "C", "D", "E"]])
    def test_buffers_are_non_empty_and_distinct(self, text, participants):
        result = segment_speakers(text, participants)
        assert len(result) == len(participants)
        assert all(result.values())
        assert len(set(result.values())) == len(participants)


class TestRoundRobin:
    def test_reconstructs_sentences_exactly_once(self):
        text = "Alpha is first. Beta comes next! Gamma asks why? Delta answers. Epsilon ends it."
        result = round_robin_split(text, ["P1", "P2", "P3"])
        sentences = split_sentences(text)
        rebuilt = [s for buffer in result.values() for s in split_sentences(buffer)]
        assert sorted(rebuilt) == sorted(sentences)

    def test_assigns_by_index_modulo(self):
        text = "S0 is here. S1 is here. S2 is here. S3 is here. S4 is here."
        result = round_robin_split(text, ["A", "B"])
        assert result["A"] == "S0 is here. S2 is here. S4 is here."
        assert result["B"] == "S1 is here. S3 is here."

    def test_fewer_sentences_than_participants_uses_words(self):
        result = round_robin_split("one single long sentence with many words", ["A", "B", "C"])
        assert result["A"].split()[0] == "one"
        assert all(result.values())

    def test_identical_buffers_are_labelled(self):
        result = round_robin_split("Same. Same. Same. Same.", ["A", "B"])
        assert result["A"] == "Same. Same."
        assert result["B"] == "(B) Same. Same."


def test_min_length_threshold():
    assert MIN_SPEAKER_CHARS == 50
