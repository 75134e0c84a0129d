"""
Extraction flows — the caller-facing surface of the engine.

  extract_questions()          one problem image   → QuestionRecords
  extract_answer_key()         one answer sheet    → {question_number: letter}
  build_test()                 sheet + problem images → merged Simulation
  build_test_from_text()       OCR text of sheet + pages → merged Simulation, no provider call
  build_answer_key_test()      sheet only          → answer-key-only Simulation
  generate_reading_questions() bulk text generation (see orchestrator.py)
  test_connection()            provider probe

Every provider-backed call takes the ProviderConfig explicitly; the service holds no
per-request state.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from quiz_engine.config import GenerationSettings, ProviderConfig
from quiz_engine.errors import (
    ConfigurationError,
    ContentAbsentError,
    ParseError,
    ProviderError,
    QuizEngineError,
)
from quiz_engine.gateway import InvocationOptions, ProviderGateway
from quiz_engine.images import ImagePayload
from quiz_engine.legacy_ocr import answers_to_key, extract_answers_from_text, extract_question_from_text
from quiz_engine.merger import AnswerKeyMerger, build_answer_key
from quiz_engine.orchestrator import BatchGenerationOrchestrator
from quiz_engine.parser import PLACEHOLDER_OPTIONS, ResponseParser
from quiz_engine.prompts import build_prompt
from quiz_engine.schemas import (
    AnswerKeyResult,
    ConnectionStatus,
    ExtractionResult,
    ExtractionTask,
    GenerationResult,
    ImageFailure,
    QuestionRecord,
    Simulation,
    SimulationBuildResult,
)

log = logging.getLogger("quiz_engine.extraction")

DEFAULT_TEST_TITLE = "TOEIC Practice Test"
DEFAULT_ANSWER_KEY_TITLE = "TOEIC Answer Sheet Test"

VISION_OPTIONS = InvocationOptions(temperature=0.1, max_tokens=4000)


def placeholder_question(index: int, image_ref: Optional[str] = None) -> QuestionRecord:
    """Stand-in for a problem image that could not be extracted (index is 0-based)."""
    number = index + 1
    return QuestionRecord(
        id=number,
        kind="image",
        question_text=f"Question {number}: Please answer based on the content shown.",
        options=list(PLACEHOLDER_OPTIONS),
        correct_answer="A",
        image=image_ref,
    )


def answer_key_simulation(answer_key: Mapping[int, str], title: Optional[str] = None) -> Simulation:
    """Simulation of answer-key-only records, one per numbered answer."""
    questions = [
        QuestionRecord(
            id=number,
            kind="answer-key",
            question_text=f"Question {number} - Answer key only",
            options=["A", "B", "C", "D"],
            correct_answer=answer,
        )
        for number, answer in sorted(answer_key.items())
    ]
    return Simulation(
        title=title or DEFAULT_ANSWER_KEY_TITLE,
        questions=questions,
        is_answer_key_only=True,
    )


class QuizExtractionService:

    def __init__(
        self,
        gateway: Optional[ProviderGateway] = None,
        parser: Optional[ResponseParser] = None,
        merger: Optional[AnswerKeyMerger] = None,
        settings: Optional[GenerationSettings] = None,
    ):
        self.gateway = gateway or ProviderGateway()
        self.parser = parser or ResponseParser()
        self.merger = merger or AnswerKeyMerger()
        self.orchestrator = BatchGenerationOrchestrator(self.gateway, self.parser, settings)

    # ── Single image ─────────────────────────────────────────────────────────

    async def extract_questions(
        self,
        image: ImagePayload,
        config: ProviderConfig,
        image_ref: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Extract every question visible in one problem image.

        Raises:
            ConfigurationError, ProviderError
            ContentAbsentError: the model reported a blank / empty image
            ParseError:         no questions could be recovered (raw_response attached)
        """
        log.info(f"[EXTRACT] Questions from {image.name or 'image'} ({image.mime_type}, {len(image.data)} bytes)")
        raw = await self.gateway.invoke_vision(
            build_prompt(ExtractionTask.QUESTION_EXTRACTION), image, config, VISION_OPTIONS
        )
        outcome = self.parser.parse(raw, ExtractionTask.QUESTION_EXTRACTION)
        candidates, diagnostics = outcome.unwrap()
        if not candidates:
            raise ParseError(
                "No questions could be extracted from the image. Please ensure the image is clear "
                "and contains TOEIC questions.",
                raw_response=raw,
            )

        records = [
            QuestionRecord.from_candidate(
                c, record_id=c.question_number or index + 1, kind="image", image=image_ref
            )
            for index, c in enumerate(candidates)
        ]
        log.info(f"[EXTRACT] {len(records)} question(s) extracted")
        return ExtractionResult(records=records, raw_response=raw, diagnostics=diagnostics)

    async def extract_answer_key(
        self,
        image: ImagePayload,
        config: ProviderConfig,
        start_number: int = 101,
    ) -> AnswerKeyResult:
        """
        Extract {question_number: answer} pairs from an answer-sheet image.

        Raises:
            ConfigurationError, ProviderError
            ContentAbsentError: the model reported a blank / empty image
            ParseError:         no answers could be recovered (raw_response attached)
        """
        log.info(f"[ANSWERS] Answer sheet {image.name or 'image'} ({image.mime_type}, {len(image.data)} bytes)")
        raw = await self.gateway.invoke_vision(
            build_prompt(ExtractionTask.ANSWER_SHEET_EXTRACTION, start_number=start_number),
            image,
            config,
            VISION_OPTIONS,
        )
        outcome = self.parser.parse(raw, ExtractionTask.ANSWER_SHEET_EXTRACTION)
        entries, diagnostics = outcome.unwrap()
        if not entries:
            raise ParseError(
                "No answers could be extracted from the answer sheet. Please ensure the image is clear.",
                raw_response=raw,
            )

        log.info(f"[ANSWERS] {len(entries)} answer(s) extracted")
        return AnswerKeyResult(entries=entries, raw_response=raw, diagnostics=diagnostics)

    # ── Whole test ───────────────────────────────────────────────────────────

    async def build_test(
        self,
        problem_images: Sequence[ImagePayload],
        answer_sheet: ImagePayload,
        title: Optional[str],
        config: ProviderConfig,
        image_refs: Optional[Sequence[Optional[str]]] = None,
    ) -> SimulationBuildResult:
        """
        Answer sheet first, then each problem image in order; answers merged last.

        A problem image that fails is replaced by a placeholder question and
        recorded in result.failures. A failed answer sheet fails the whole build.

        Raises:
            ConfigurationError: provider credentials missing
            QuizEngineError:    the answer sheet could not be processed
        """
        config.require_configured()
        log.info(f"[BUILD] Starting: {len(problem_images)} problem image(s), answer sheet {answer_sheet.name or 'image'}")

        try:
            key_result = await self.extract_answer_key(answer_sheet, config)
        except ConfigurationError:
            raise
        except QuizEngineError as e:
            log.error(f"[BUILD] Answer sheet failed: {e}")
            raise QuizEngineError(f"Failed to process answer sheet: {e}") from e
        answer_key = build_answer_key(key_result.entries)

        records: List[QuestionRecord] = []
        failures: List[ImageFailure] = []
        for i, image in enumerate(problem_images):
            image_ref = image_refs[i] if image_refs and i < len(image_refs) else None
            log.info(f"[BUILD] Problem image {i + 1}/{len(problem_images)}...")
            try:
                extracted = await self.extract_questions(image, config, image_ref=image_ref)
            except (ContentAbsentError, ParseError, ProviderError) as e:
                log.warning(f"[BUILD] Failed to process image {i + 1}: {e}")
                failures.append(ImageFailure(index=i, error_type=type(e).__name__, message=str(e)))
                records.append(placeholder_question(i, image_ref))
            else:
                records.extend(extracted.records)

        report = self.merger.merge(records, answer_key)
        simulation = Simulation(title=title or DEFAULT_TEST_TITLE, questions=report.records)
        log.info(
            f"[BUILD] Done: {len(simulation.questions)} question(s), "
            f"{len(failures)} failed image(s), {report.default_count} defaulted answer(s)"
        )
        return SimulationBuildResult(simulation=simulation, merge=report, failures=failures)

    def build_test_from_text(
        self,
        problem_texts: Sequence[str],
        answer_sheet_text: str,
        title: Optional[str] = None,
        image_refs: Optional[Sequence[Optional[str]]] = None,
    ) -> SimulationBuildResult:
        """
        build_test() over already-recognized OCR text instead of a provider call.

        Question i gets id i + 1 and the i-th answer read off the sheet; ids past
        the end of the answer list default to "A" in the merge report.
        """
        answers = extract_answers_from_text(answer_sheet_text)
        answer_key = answers_to_key(answers, start_number=1)
        log.info(f"[OCR] {len(answers)} answer(s) read from answer-sheet text")

        records: List[QuestionRecord] = []
        for i, text in enumerate(problem_texts):
            image_ref = image_refs[i] if image_refs and i < len(image_refs) else None
            question, options = extract_question_from_text(text, i + 1)
            records.append(QuestionRecord(
                id=i + 1, kind="image", question_text=question, options=options, image=image_ref,
            ))

        report = self.merger.merge(records, answer_key)
        simulation = Simulation(title=title or DEFAULT_TEST_TITLE, questions=report.records)
        log.info(f"[OCR] Done: {len(simulation.questions)} question(s), {report.default_count} defaulted answer(s)")
        return SimulationBuildResult(simulation=simulation, merge=report)

    async def build_answer_key_test(
        self,
        answer_sheet: ImagePayload,
        title: Optional[str],
        config: ProviderConfig,
        start_number: int = 101,
    ) -> Simulation:
        """Answer-key-only simulation straight from an answer sheet."""
        key_result = await self.extract_answer_key(answer_sheet, config, start_number=start_number)
        return answer_key_simulation(build_answer_key(key_result.entries), title)

    # ── Generation & connectivity ────────────────────────────────────────────

    async def generate_reading_questions(self, count: int, config: ProviderConfig) -> GenerationResult:
        return await self.orchestrator.generate(count, config)

    async def test_connection(self, config: ProviderConfig) -> ConnectionStatus:
        return await self.gateway.probe(config)


def parse_manual_answers(text: str, start_number: int, end_number: int) -> Dict[int, str]:
    """
    Typed-in answers ("B D C A ..." or "B, D, C") → {question_number: letter}.

    Raises:
        ValueError: range invalid, wrong number of answers, or a non A-D answer
    """
    if start_number >= end_number:
        raise ValueError("Start number must be less than end number")

    answers = [a.strip() for a in text.replace(",", " ").split() if a.strip()]
    expected = end_number - start_number + 1
    if len(answers) != expected:
        raise ValueError(f"Expected {expected} answers, but got {len(answers)}. Please check your input.")
    if not all(a.upper() in ("A", "B", "C", "D") for a in answers):
        raise ValueError("All answers must be A, B, C, or D")
    return {start_number + i: a.upper() for i, a in enumerate(answers)}
