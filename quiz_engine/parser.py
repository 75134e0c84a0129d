"""
Response parser — raw provider text → validated records.

Providers do not always honour "respond with ONLY JSON", so the reply goes
through an ordered list of strategies, each a pure function
text → Optional[list of raw items], stopping at the first that yields a
questions array:

  1. direct                 first balanced {...} / [...] span that decodes to
                            a questions array (prose like "[2]" is skipped)
  2. markdown_strip         drop ``` fences, then (1)
  3. trailing_comma_repair  drop "," before } / ], decode
  4. boundary_reextract     first "{" .. last "}", repair, decode
  5. lenient_repair         json_repair on the boundary span (truncated replies)
  6. regex_fallback         question extraction only: "Question 1: ...",
                            "1. ...", "Q1: ..." with placeholder options

Content-absence phrases in an image reply short-circuit everything: such a
reply is never handed to the regex tier.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import json_repair
from pydantic import ValidationError

from quiz_engine.errors import ParseError
from quiz_engine.schemas import (
    ANSWER_LETTERS,
    AnswerKeyEntry,
    CandidateRecord,
    ExtractionTask,
    ParseDiagnostics,
    ParseOutcome,
)

log = logging.getLogger("quiz_engine.parser")

CONTENT_ABSENT_PHRASES = ("blank", "no content", "no visible", "white image")

PLACEHOLDER_OPTIONS = ["Option A", "Option B", "Option C", "Option D"]

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_FALLBACK_PATTERNS = (
    re.compile(r"Question\s+(\d+)[:\s]+(.+?)(?=Question|\d+\.|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"(\d+)\.\s*(.+?)(?=\d+\.|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"Q(\d+)[:\s]+(.+?)(?=Q\d+|$)", re.IGNORECASE | re.MULTILINE),
)

RawItems = List[Any]
Strategy = Callable[[str], Optional[RawItems]]


# ─── Text helpers ──────────────────────────────────────────────────────────────

def detect_content_absence(text: str) -> Optional[str]:
    """Return the first content-absence phrase found in text (case-insensitive)."""
    lowered = text.lower()
    for phrase in CONTENT_ABSENT_PHRASES:
        if phrase in lowered:
            return phrase
    return None


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _next_opening(text: str, pos: int) -> int:
    starts = [i for i in (text.find("{", pos), text.find("[", pos)) if i != -1]
    return min(starts) if starts else -1


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the bracket that closes text[start], ignoring brackets inside JSON strings."""
    stack: List[str] = []
    in_str = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i + 1
    return None


def iter_balanced_spans(text: str) -> Iterator[str]:
    """Every top-level {...} / [...] span whose brackets balance, left to right."""
    pos = _next_opening(text, 0)
    while pos != -1:
        end = _balanced_end(text, pos)
        if end is None:
            pos = _next_opening(text, pos + 1)
        else:
            yield text[pos:end]
            pos = _next_opening(text, end)


def find_balanced_span(text: str) -> Optional[str]:
    """The first balanced {...} / [...] span, or None."""
    return next(iter_balanced_spans(text), None)


def _questions_array(value: Any) -> Optional[RawItems]:
    # A bare list only counts when it holds objects: "[2]" in prose is not a reply
    if isinstance(value, list):
        if value and all(isinstance(item, dict) for item in value):
            return value
        return None
    if isinstance(value, dict):
        for key in ("questions", "question"):
            if isinstance(value.get(key), list):
                return value[key]
    return None


def _decode(candidate: Optional[str]) -> Optional[RawItems]:
    if candidate is None:
        return None
    try:
        return _questions_array(json.loads(candidate))
    except ValueError:
        return None


def _boundary_span(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


# ─── Strategies ────────────────────────────────────────────────────────────────

def direct_match(text: str) -> Optional[RawItems]:
    for span in iter_balanced_spans(text):
        items = _decode(span)
        if items is not None:
            return items
    return None


def markdown_strip(text: str) -> Optional[RawItems]:
    return direct_match(strip_code_fences(text))


def trailing_comma_repair(text: str) -> Optional[RawItems]:
    for span in iter_balanced_spans(strip_code_fences(text)):
        items = _decode(remove_trailing_commas(span))
        if items is not None:
            return items
    return None


def boundary_reextract(text: str) -> Optional[RawItems]:
    span = _boundary_span(strip_code_fences(text))
    if span is None:
        return None
    return _decode(remove_trailing_commas(span))


def lenient_repair(text: str) -> Optional[RawItems]:
    cleaned = strip_code_fences(text)
    start = cleaned.find("{")
    if start == -1:
        return None
    # Cut at the last "}" so a truncated trailing item is dropped, not half-filled
    candidate = _boundary_span(cleaned) or cleaned[start:]
    try:
        value = json_repair.loads(candidate)
    except ValueError:
        return None
    items = _questions_array(value)
    return items if items else None


def regex_fallback(text: str) -> Optional[RawItems]:
    found: Dict[int, dict] = {}
    for pattern in _FALLBACK_PATTERNS:
        for match in pattern.finditer(text):
            number = int(match.group(1))
            question = match.group(2).strip()
            if number and question and number not in found:
                found[number] = {
                    "questionNumber": number,
                    "question": question,
                    "options": list(PLACEHOLDER_OPTIONS),
                    "answer": "A",
                }
    return list(found.values()) or None


JSON_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("direct", direct_match),
    ("markdown_strip", markdown_strip),
    ("trailing_comma_repair", trailing_comma_repair),
    ("boundary_reextract", boundary_reextract),
    ("lenient_repair", lenient_repair),
)
REGEX_STRATEGY: Tuple[str, Strategy] = ("regex_fallback", regex_fallback)


# ─── Field coercion ────────────────────────────────────────────────────────────

def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _validation_message(e: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


# ─── Parser ────────────────────────────────────────────────────────────────────

class ResponseParser:
    """
    Turns raw provider text into a ParseOutcome for a given ExtractionTask.

    Strategies are plain (name, function) pairs, so a tier can be added,
    removed or tested on its own.
    """

    def __init__(
        self,
        json_strategies: Sequence[Tuple[str, Strategy]] = JSON_STRATEGIES,
        regex_strategy: Optional[Tuple[str, Strategy]] = REGEX_STRATEGY,
    ):
        self.json_strategies = list(json_strategies)
        self.regex_strategy = regex_strategy

    def strategies_for(self, task: ExtractionTask) -> List[Tuple[str, Strategy]]:
        strategies = list(self.json_strategies)
        if task == ExtractionTask.QUESTION_EXTRACTION and self.regex_strategy is not None:
            strategies.append(self.regex_strategy)
        return strategies

    def parse(
        self,
        raw_text: str,
        task: ExtractionTask,
        *,
        expected_count: Optional[int] = None,
        start_id: int = 1,
    ) -> ParseOutcome:
        """
        Parse one provider reply.

        Args:
            raw_text:       Reply text exactly as returned by the gateway
            task:           Decides prompt contract and validation rules
            expected_count: Bulk generation only: number of items requested
            start_id:       Bulk generation only: first id of the batch

        Returns:
            ParseOutcome tagged ok | content_absent | parse_failed
        """
        raw_text = raw_text or ""
        diagnostics = ParseDiagnostics()

        # Generated passages may legitimately say "blank"; only image replies are checked
        if task.is_image_task:
            phrase = detect_content_absence(raw_text)
            if phrase:
                log.warning(f"[PARSE] {task.value}: content-absence phrase '{phrase}' in response")
                return ParseOutcome(
                    status="content_absent",
                    task=task,
                    diagnostics=diagnostics,
                    error=f"No content found in image (response mentions '{phrase}')",
                    raw_response=raw_text,
                )

        items: Optional[RawItems] = None
        for name, strategy in self.strategies_for(task):
            diagnostics.attempted.append(name)
            items = strategy(raw_text)
            if items is not None:
                diagnostics.strategy = name
                break

        if items is None:
            log.error(f"[PARSE] {task.value}: no strategy produced a questions array ({len(raw_text)} chars)")
            log.debug(f"[PARSE] Raw response (first 1000 chars): {raw_text[:1000]}")
            return ParseOutcome(
                status="parse_failed",
                task=task,
                diagnostics=diagnostics,
                error="No valid JSON with a questions array found in response",
                raw_response=raw_text,
            )

        if diagnostics.strategy != "direct":
            log.info(f"[PARSE] {task.value}: recovered via '{diagnostics.strategy}'")

        try:
            if task == ExtractionTask.ANSWER_SHEET_EXTRACTION:
                entries = self._validate_answer_key(items, diagnostics)
                outcome = ParseOutcome(status="ok", task=task, answer_key=entries,
                                       diagnostics=diagnostics, raw_response=raw_text)
            elif task == ExtractionTask.BULK_GENERATION:
                records = self._validate_generated(items, start_id, expected_count, diagnostics)
                outcome = ParseOutcome(status="ok", task=task, records=records,
                                       diagnostics=diagnostics, raw_response=raw_text)
            else:
                records = self._validate_extracted(items, diagnostics)
                outcome = ParseOutcome(status="ok", task=task, records=records,
                                       diagnostics=diagnostics, raw_response=raw_text)
        except ParseError as e:
            log.error(f"[PARSE] {task.value}: {e}")
            return ParseOutcome(
                status="parse_failed",
                task=task,
                diagnostics=diagnostics,
                error=str(e),
                raw_response=raw_text,
            )

        if diagnostics.dropped:
            log.warning(f"[PARSE] {task.value}: dropped {len(diagnostics.dropped)} invalid item(s)")
        log.info(f"[PARSE] {task.value}: {len(outcome.items)} item(s) via '{diagnostics.strategy}'")
        return outcome

    # ── Per-task validation ───────────────────────────────────────────────────

    def _validate_extracted(self, items: RawItems, diagnostics: ParseDiagnostics) -> List[CandidateRecord]:
        """Image questions are lenient: invalid items are dropped and noted."""
        records = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                diagnostics.dropped.append(f"item {index}: not an object")
                continue

            number = _as_int(item.get("questionNumber"))
            options = item.get("options")
            if options is None:
                options = list(ANSWER_LETTERS)
            if not isinstance(options, list) or not options:
                diagnostics.dropped.append(f"item {index}: options must be a non-empty list")
                continue

            options = [str(o).strip() for o in options]
            if len(options) != 4:
                diagnostics.warnings.append(
                    f"item {index}: {len(options)} option(s) normalized to 4"
                )
                options = (options + PLACEHOLDER_OPTIONS[len(options):])[:4]

            question = _clean_text(item.get("question")) or f"Question {number or index + 1}"
            try:
                records.append(CandidateRecord(
                    question_number=number,
                    question_text=question,
                    options=options,
                    correct_answer=item.get("answer") or "A",
                    passage_text=_clean_text(item.get("passage")) or None,
                ))
            except ValidationError as e:
                diagnostics.dropped.append(f"item {index}: {_validation_message(e)}")
        return records

    def _validate_answer_key(self, items: RawItems, diagnostics: ParseDiagnostics) -> List[AnswerKeyEntry]:
        """Answer sheets: keyed by question number, last write wins."""
        by_number: Dict[int, AnswerKeyEntry] = {}
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                diagnostics.dropped.append(f"item {index}: not an object")
                continue
            number = _as_int(item.get("questionNumber"))
            if number is None or number < 1:
                diagnostics.dropped.append(f"item {index}: missing question number")
                continue
            try:
                entry = AnswerKeyEntry(question_number=number, answer=item.get("answer") or "A")
            except ValidationError as e:
                diagnostics.dropped.append(f"item {index}: {_validation_message(e)}")
                continue
            if number in by_number and by_number[number].answer != entry.answer:
                diagnostics.warnings.append(
                    f"question {number}: duplicate answer {by_number[number].answer} overwritten by {entry.answer}"
                )
            by_number[number] = entry
        return list(by_number.values())

    def _validate_generated(
        self,
        items: RawItems,
        start_id: int,
        expected_count: Optional[int],
        diagnostics: ParseDiagnostics,
    ) -> List[CandidateRecord]:
        """Bulk generation is strict: one bad item fails the whole batch."""
        records = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ParseError(f"Invalid question format at index {index}: not an object")

            passage = _clean_text(item.get("passage"))
            question = _clean_text(item.get("question"))
            options = item.get("options")
            if (
                not passage
                or not question
                or not isinstance(options, list)
                or len(options) != 4
                or not all(isinstance(o, str) and o.strip() for o in options)
            ):
                raise ParseError(f"Invalid question format at index {index}: missing required fields")

            number = _as_int(item.get("id")) or start_id + index
            answer = item.get("answer")
            answer = answer.strip().upper() if isinstance(answer, str) else answer
            if answer not in ANSWER_LETTERS:
                raise ParseError(f"Invalid answer format at question {number}: must be A, B, C, or D")

            records.append(CandidateRecord(
                question_number=number,
                question_text=question,
                options=[o.strip() for o in options],
                correct_answer=answer,
                passage_text=passage,
            ))

        if expected_count is not None and len(records) != expected_count:
            diagnostics.warnings.append(f"Expected {expected_count} questions but got {len(records)}")
            log.warning(f"[PARSE] Expected {expected_count} questions but got {len(records)}")
        return records
