"""
Tests for quiz_engine.prompts.
"""

import pytest

from quiz_engine.prompts import (
    build_answer_sheet_prompt,
    build_prompt,
    build_reading_generation_prompt,
    max_tokens_for_batch,
)
from quiz_engine.schemas import ExtractionTask


class TestBuildPrompt:

    def test_question_prompt_when_built_then_shows_json_shape(self):
        prompt = build_prompt(ExtractionTask.QUESTION_EXTRACTION)

        assert '"questionNumber": 1' in prompt
        assert '"options": [' in prompt
        assert "{{" not in prompt

    def test_answer_sheet_prompt_when_default_then_starts_at_101(self):
        prompt = build_prompt(ExtractionTask.ANSWER_SHEET_EXTRACTION)

        assert '"questionNumber": 101' in prompt
        assert '"questionNumber": 102' in prompt

    def test_answer_sheet_prompt_when_start_number_given_then_used(self):
        assert '"questionNumber": 1,' in build_answer_sheet_prompt(start_number=1)

    def test_reading_prompt_when_batch_then_count_and_ids_embedded(self):
        prompt = build_prompt(ExtractionTask.BULK_GENERATION, count=20, start_id=21)

        assert "Generate exactly 20 TOEIC" in prompt
        assert '"id": 21,' in prompt
        assert '"id": 22,' in prompt
        assert "starting from 21 (last id: 40)" in prompt
        assert "ONLY valid JSON" in prompt

    def test_reading_prompt_when_count_missing_then_value_error(self):
        with pytest.raises(ValueError, match="count"):
            build_prompt(ExtractionTask.BULK_GENERATION)

    @pytest.mark.parametrize("count,start_id", [(0, 1), (5, 0), (-3, 1)])
    def test_reading_prompt_when_params_invalid_then_value_error(self, count, start_id):
        with pytest.raises(ValueError):
            build_reading_generation_prompt(count, start_id)

    def test_answer_sheet_prompt_when_start_number_invalid_then_value_error(self):
        with pytest.raises(ValueError):
            build_answer_sheet_prompt(start_number=0)


class TestMaxTokens:

    @pytest.mark.parametrize("count,expected", [(1, 200), (20, 4000), (80, 16000), (100, 16000)])
    def test_max_tokens_when_count_then_200_per_question_capped(self, count, expected):
        assert max_tokens_for_batch(count) == expected
