"""
Quiz extraction & generation engine
quiz_engine/

Steps:
1. Prompt Builder     — task-specific instruction text (prompts.py)
2. Provider Gateway   — Gemini / Azure OpenAI call, raw reply text (gateway.py)
3. Response Parser    — fallback cascade → validated records (parser.py)
4. Answer-Key Merger  — apply an extracted answer sheet to questions (merger.py)
5. Batch Orchestrator — "exactly N" bulk generation with bounded fill retries (orchestrator.py)

extraction.QuizExtractionService wires the steps into caller-facing flows.
legacy_ocr.py is the provider-free path: regex matching over already-recognized
text, merged through the same Answer-Key Merger.
"""

from quiz_engine.config import GenerationSettings, ProviderConfig, ProviderKind, load_provider_config
from quiz_engine.errors import (
    ConfigurationError,
    ContentAbsentError,
    CountShortfallWarning,
    GenerationError,
    ParseError,
    ProviderError,
    QuizEngineError,
)
from quiz_engine.extraction import QuizExtractionService
from quiz_engine.gateway import InvocationOptions, ProviderGateway
from quiz_engine.legacy_ocr import answers_to_key, extract_answers_from_text, extract_question_from_text
from quiz_engine.merger import AnswerKeyMerger, build_answer_key
from quiz_engine.orchestrator import BatchGenerationOrchestrator
from quiz_engine.parser import ResponseParser
from quiz_engine.prompts import build_prompt
from quiz_engine.schemas import ExtractionTask, QuestionRecord, Simulation

__all__ = [
    "AnswerKeyMerger",
    "BatchGenerationOrchestrator",
    "ConfigurationError",
    "ContentAbsentError",
    "CountShortfallWarning",
    "ExtractionTask",
    "GenerationError",
    "GenerationSettings",
    "InvocationOptions",
    "ParseError",
    "ProviderConfig",
    "ProviderError",
    "ProviderGateway",
    "ProviderKind",
    "QuestionRecord",
    "QuizEngineError",
    "QuizExtractionService",
    "ResponseParser",
    "Simulation",
    "answers_to_key",
    "build_answer_key",
    "build_prompt",
    "extract_answers_from_text",
    "extract_question_from_text",
    "load_provider_config",
]
