"""
Regex matching over plain OCR text (the pre-LLM answer-sheet path).

The text is assumed to be already recognized; pixel-level OCR is not done
here. Answers come back positionally, so answers_to_key() turns them into a
mapping that AnswerKeyMerger can consume like an LLM-extracted key.
"""

import logging
import re
from typing import Dict, List, Sequence, Tuple

log = logging.getLogger("quiz_engine.legacy_ocr")

DEFAULT_ANSWERS = ["A", "B", "C", "D", "A"]

# Tried in order; the first pattern with any match wins.
_ANSWER_PATTERNS = (
    re.compile(r"(\d+)[.)\s]+([ABCD])\b", re.IGNORECASE),           # "1. A", "1) A", "1 A"
    re.compile(r"answer\s*(\d+)[:\s]+([ABCD])\b", re.IGNORECASE),   # "Answer 1: A"
    re.compile(r"q(\d+)[:\s]+([ABCD])\b", re.IGNORECASE),           # "Q1: A"
)
_ANSWER_RUN = re.compile(r"\b([ABCD])\s+([ABCD])\s+([ABCD])\s+([ABCD])\b")
_BARE_LETTER = re.compile(r"\b([ABCD])\b")

_QUESTION_PATTERNS = (
    re.compile(r"(?:question|q)\s*\d*[:\s]+(.+?)(?=[ABCD]\)|$)", re.IGNORECASE),
    re.compile(r"((?:what|how|when|where|why|which|who)\s+.+?)(?=[ABCD]\)|$)", re.IGNORECASE),
    re.compile(r"((?:look at|listen to|read|examine)\s+.+?)(?=[ABCD]\)|$)", re.IGNORECASE),
)
_OPTION_PATTERN = re.compile(r"\b([ABCD])[.)]\s*(.+?)(?=\s[ABCD][.)]|$)")

MAX_QUESTION_CHARS = 200


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def extract_answers_from_text(text: str) -> List[str]:
    """Pull answer letters, in order, out of answer-sheet OCR text."""
    clean = _normalize(text)
    answers: List[str] = []

    for pattern in _ANSWER_PATTERNS:
        matches = pattern.findall(clean)
        if matches:
            answers = [letter.upper() for _number, letter in matches]
            break

    if not answers:
        for run in _ANSWER_RUN.findall(clean):
            answers.extend(run)

    if not answers:
        answers = _BARE_LETTER.findall(clean)

    if not answers:
        log.warning("[LegacyOCR] No answers found in answer sheet, using default pattern")
        return list(DEFAULT_ANSWERS)
    return answers


def extract_question_from_text(text: str, question_number: int) -> Tuple[str, List[str]]:
    """Best-effort question stem and exactly 4 options from problem-image OCR text."""
    clean = _normalize(text)

    question = ""
    for pattern in _QUESTION_PATTERNS:
        match = pattern.search(clean)
        if match and match.group(1).strip():
            question = match.group(1).strip()
            break
    if not question:
        question = f"Question {question_number}: Please answer based on the content shown."

    options = [f"{letter}) {body.strip()}" for letter, body in _OPTION_PATTERN.findall(clean)]
    if len(options) < 2:
        options = []

    while len(options) < 4:
        letter = "ABCD"[len(options)]
        options.append(f"{letter}) Option {letter}")
    options = options[:4]

    if len(question) > MAX_QUESTION_CHARS:
        question = question[:MAX_QUESTION_CHARS] + "..."
    return question, options


def answers_to_key(answers: Sequence[str], start_number: int = 1) -> Dict[int, str]:
    """Positional answers → {question_number: letter}, numbering from start_number."""
    return {start_number + i: a.upper() for i, a in enumerate(answers)}
