"""
Tests for quiz_engine.extraction — image flows, the whole-test build and
answer-key-only bundles.
"""

import asyncio
import json

import pytest

from quiz_engine.errors import ContentAbsentError, ParseError, ProviderError, QuizEngineError
from quiz_engine.merger import build_answer_key
from quiz_engine.extraction import (
    QuizExtractionService,
    answer_key_simulation,
    parse_manual_answers,
    placeholder_question,
)


def _questions_reply(*numbers):
    return json.dumps({
        "questions": [
            {
                "questionNumber": n,
                "question": f"What is announced in notice {n}?",
                "options": ["A sale", "A delay", "A merger", "A closure"],
                "answer": "B",
            }
            for n in numbers
        ],
        "type": "questions",
    })


def _answers_reply(mapping):
    return json.dumps({
        "questions": [{"questionNumber": n, "answer": a} for n, a in mapping.items()],
        "type": "answer_key",
    })


@pytest.fixture
def service_with(scripted_gateway, fast_settings):
    def make(*replies):
        gateway, provider = scripted_gateway(*replies)
        return QuizExtractionService(gateway=gateway, settings=fast_settings), provider
    return make


class TestExtractQuestions:

    def test_extract_questions_when_numbers_present_then_used_as_ids(self, service_with, sample_image, gemini_config):
        service, provider = service_with(_questions_reply(147, 148))

        result = asyncio.run(service.extract_questions(sample_image, gemini_config, image_ref="https://cdn/p1.png"))

        assert [r.id for r in result.records] == [147, 148]
        assert all(r.kind == "image" and r.image == "https://cdn/p1.png" for r in result.records)
        assert provider.calls[0]["image"] is sample_image
        assert result.raw_response.startswith("{")

    def test_extract_questions_when_numbers_missing_then_positional_ids(self, service_with, sample_image, gemini_config):
        reply = json.dumps({"questions": [
            {"question": "First?", "options": ["a", "b", "c", "d"]},
            {"question": "Second?", "options": ["a", "b", "c", "d"]},
        ]})
        service, _ = service_with(reply)

        result = asyncio.run(service.extract_questions(sample_image, gemini_config))

        assert [r.id for r in result.records] == [1, 2]

    def test_extract_questions_when_blank_image_then_content_absent(self, service_with, sample_image, gemini_config):
        service, _ = service_with("The image is blank.")

        with pytest.raises(ContentAbsentError):
            asyncio.run(service.extract_questions(sample_image, gemini_config))

    def test_extract_questions_when_empty_array_then_parse_error_with_raw(self, service_with, sample_image, gemini_config):
        service, _ = service_with('{"questions": []}')

        with pytest.raises(ParseError) as exc:
            asyncio.run(service.extract_questions(sample_image, gemini_config))
        assert exc.value.raw_response == '{"questions": []}'


class TestExtractAnswerKey:

    def test_extract_answer_key_when_valid_then_mapping(self, service_with, sample_image, gemini_config):
        service, provider = service_with(_answers_reply({101: "B", 102: "c"}))

        result = asyncio.run(service.extract_answer_key(sample_image, gemini_config))

        assert build_answer_key(result.entries) == {101: "B", 102: "C"}
        assert '"questionNumber": 101' in provider.calls[0]["prompt"]

    def test_extract_answer_key_when_nothing_usable_then_parse_error(self, service_with, sample_image, gemini_config):
        service, _ = service_with(_answers_reply({101: "X"}))

        with pytest.raises(ParseError, match="No answers"):
            asyncio.run(service.extract_answer_key(sample_image, gemini_config))


class TestBuildTest:

    def test_build_test_when_all_images_succeed_then_answers_merged(self, service_with, sample_image, gemini_config):
        service, provider = service_with(
            _answers_reply({101: "D", 102: "C", 103: "A"}),
            _questions_reply(101, 102),
            _questions_reply(103),
        )

        result = asyncio.run(service.build_test([sample_image, sample_image], sample_image, "Mock 1", gemini_config))

        sim = result.simulation
        assert sim.title == "Mock 1"
        assert [(q.id, q.correct_answer) for q in sim.questions] == [(101, "D"), (102, "C"), (103, "A")]
        assert result.failures == []
        assert result.merge.default_count == 0
        assert "answer sheets" in provider.calls[0]["prompt"]

    def test_build_test_when_one_image_fails_then_placeholder_and_failure_recorded(
        self, service_with, sample_image, gemini_config
    ):
        service, _ = service_with(
            _answers_reply({1: "C", 2: "B"}),
            "There is no visible text in this picture.",
            ProviderError("Gemini error: 500 - internal", provider="gemini", status_code=500),
        )

        result = asyncio.run(
            service.build_test([sample_image, sample_image], sample_image, None, gemini_config,
                               image_refs=["u1", "u2"])
        )

        questions = result.simulation.questions
        assert [q.id for q in questions] == [1, 2]
        assert questions[0].question_text == "Question 1: Please answer based on the content shown."
        assert questions[1].image == "u2"
        assert [q.correct_answer for q in questions] == ["C", "B"]
        assert [(f.index, f.error_type) for f in result.failures] == [
            (0, "ContentAbsentError"),
            (1, "ProviderError"),
        ]
        assert result.simulation.title == "TOEIC Practice Test"

    def test_build_test_when_answer_sheet_fails_then_whole_build_fails(self, service_with, sample_image, gemini_config):
        service, provider = service_with("I could not read anything useful.")

        with pytest.raises(QuizEngineError, match="Failed to process answer sheet"):
            asyncio.run(service.build_test([sample_image], sample_image, "t", gemini_config))
        assert len(provider.calls) == 1

    def test_build_test_when_key_does_not_match_then_default_ratio_visible(
        self, service_with, sample_image, gemini_config
    ):
        service, _ = service_with(_answers_reply({101: "C"}), _questions_reply(1, 2))

        result = asyncio.run(service.build_test([sample_image], sample_image, "t", gemini_config))

        assert result.merge.all_defaulted
        assert result.merge.default_ratio == 1.0


class TestBuildTestFromText:

    def test_build_test_from_text_when_sheet_numbered_then_answers_by_position(self, service_with):
        service, provider = service_with()
        pages = [
            "Question 1: What is being advertised? A) A car B) A phone C) A house D) A trip",
            "Where will the conference take place?",
        ]

        result = service.build_test_from_text(pages, "1. D\n2. b", "OCR Test", image_refs=["p1.png", "p2.png"])

        questions = result.simulation.questions
        assert result.simulation.title == "OCR Test"
        assert [(q.id, q.correct_answer) for q in questions] == [(1, "D"), (2, "B")]
        assert questions[0].options == ["A) A car", "B) A phone", "C) A house", "D) A trip"]
        assert questions[1].options == ["A) Option A", "B) Option B", "C) Option C", "D) Option D"]
        assert questions[1].image == "p2.png"
        assert result.merge.default_count == 0
        assert provider.calls == []

    def test_build_test_from_text_when_more_pages_than_answers_then_extra_default(self, service_with):
        service, _ = service_with()

        result = service.build_test_from_text(["What time?", "Who called?", "Why late?"], "1) C 2) C")

        assert [q.correct_answer for q in result.simulation.questions] == ["C", "C", "A"]
        assert result.merge.defaulted_ids == [3]
        assert result.simulation.title == "TOEIC Practice Test"

    def test_build_test_from_text_when_sheet_unreadable_then_default_pattern(self, service_with):
        service, _ = service_with()

        result = service.build_test_from_text(["What time?", "Who called?"], "smudged scan, nothing legible")

        assert [q.correct_answer for q in result.simulation.questions] == ["A", "B"]


class TestAnswerKeyOnly:

    def test_build_answer_key_test_when_sheet_extracted_then_answer_key_records(
        self, service_with, sample_image, gemini_config
    ):
        service, _ = service_with(_answers_reply({102: "B", 101: "A"}))

        sim = asyncio.run(service.build_answer_key_test(sample_image, None, gemini_config))

        assert sim.is_answer_key_only
        assert sim.title == "TOEIC Answer Sheet Test"
        assert [(q.id, q.kind, q.correct_answer) for q in sim.questions] == [
            (101, "answer-key", "A"),
            (102, "answer-key", "B"),
        ]
        assert sim.questions[0].question_text == "Question 101 - Answer key only"

    def test_build_answer_key_test_when_sheet_repeats_number_then_last_answer_kept(
        self, service_with, sample_image, gemini_config
    ):
        reply = json.dumps({"questions": [
            {"questionNumber": 101, "answer": "A"},
            {"questionNumber": 101, "answer": "D"},
        ]})
        service, _ = service_with(reply)

        sim = asyncio.run(service.build_answer_key_test(sample_image, "Retake", gemini_config))

        assert [(q.id, q.correct_answer) for q in sim.questions] == [(101, "D")]

    def test_parse_manual_answers_when_counts_match_then_numbered_key(self):
        assert parse_manual_answers("b, d c a", 101, 104) == {101: "B", 102: "D", 103: "C", 104: "A"}

    @pytest.mark.parametrize(
        "text,start,end,message",
        [
            ("A B", 5, 5, "less than"),
            ("A B", 1, 3, "Expected 3 answers"),
            ("A E", 1, 2, "A, B, C, or D"),
        ],
    )
    def test_parse_manual_answers_when_invalid_then_value_error(self, text, start, end, message):
        with pytest.raises(ValueError, match=message):
            parse_manual_answers(text, start, end)

    def test_answer_key_simulation_when_title_given_then_kept(self):
        sim = answer_key_simulation({1: "D"}, "Week 3")

        assert sim.title == "Week 3"
        assert len(sim.id) == 9


class TestPlaceholderQuestion:

    def test_placeholder_question_when_built_then_four_option_placeholders(self):
        record = placeholder_question(2, "ref")

        assert record.id == 3
        assert record.options == ["Option A", "Option B", "Option C", "Option D"]
        assert record.image == "ref"


class TestDelegation:

    def test_generate_reading_questions_when_called_then_uses_orchestrator(
        self, service_with, batch_replies, gemini_config
    ):
        service, _ = service_with(batch_replies.full)

        result = asyncio.run(service.generate_reading_questions(4, gemini_config))

        assert len(result.records) == 4

    def test_test_connection_when_probe_replies_then_success(self, service_with, gemini_config):
        service, provider = service_with('{"status": "connected"}')

        status = asyncio.run(service.test_connection(gemini_config))

        assert status.success
        assert provider.calls[0]["image"] is None
