"""
Tests for quiz_engine.legacy_ocr — regex matching over recognized text.
"""

from quiz_engine.legacy_ocr import (
    DEFAULT_ANSWERS,
    answers_to_key,
    extract_answers_from_text,
    extract_question_from_text,
)


class TestExtractAnswers:

    def test_extract_answers_when_numbered_list_then_letters_in_order(self):
        assert extract_answers_from_text("1. A\n2. c\n3) D") == ["A", "C", "D"]

    def test_extract_answers_when_q_prefix_then_matched(self):
        assert extract_answers_from_text("Q1: B  Q2: A") == ["B", "A"]

    def test_extract_answers_when_letter_run_then_all_four_kept(self):
        assert extract_answers_from_text("KEY\nB C A D") == ["B", "C", "A", "D"]

    def test_extract_answers_when_bare_letters_then_collected(self):
        assert extract_answers_from_text("answers: B, D") == ["B", "D"]

    def test_extract_answers_when_nothing_found_then_default_pattern(self):
        answers = extract_answers_from_text("smudged scan")

        assert answers == DEFAULT_ANSWERS
        assert answers is not DEFAULT_ANSWERS


class TestExtractQuestion:

    def test_extract_question_when_stem_and_options_then_both_found(self):
        text = "Question 5: What is the price? A) $5 B) $10 C) $15 D) $20"

        question, options = extract_question_from_text(text, 5)

        assert question == "What is the price?"
        assert options == ["A) $5", "B) $10", "C) $15", "D) $20"]

    def test_extract_question_when_nothing_matches_then_placeholders(self):
        question, options = extract_question_from_text("12345", 3)

        assert question == "Question 3: Please answer based on the content shown."
        assert options == ["A) Option A", "B) Option B", "C) Option C", "D) Option D"]

    def test_extract_question_when_stem_too_long_then_truncated(self):
        question, _ = extract_question_from_text("Question 1: " + "word " * 80, 1)

        assert len(question) == 203
        assert question.endswith("...")


class TestAnswersToKey:

    def test_answers_to_key_when_start_number_then_numbered_from_it(self):
        assert answers_to_key(["a", "B"], start_number=101) == {101: "A", 102: "B"}
