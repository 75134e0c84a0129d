"""
Answer-key merge step for answer-sheet flows.

Questions extracted from problem images carry no reliable answer; the answer
sheet is extracted in a separate pass. merge() overwrites every record's
answer with the key's letter for its id, falling back to "A". The fallback is
counted in the MergeReport: a report where every record defaulted almost
always means the answer-sheet pass failed.
"""

import logging
from typing import Iterable, Mapping, Sequence

from quiz_engine.schemas import ANSWER_LETTERS, AnswerKeyEntry, MergeReport, QuestionRecord

log = logging.getLogger("quiz_engine.merger")

DEFAULT_ANSWER = "A"


def build_answer_key(entries: Iterable[AnswerKeyEntry]) -> dict:
    """question_number → answer; later entries overwrite earlier ones."""
    key = {}
    for entry in entries:
        key[entry.question_number] = entry.answer
    return key


class AnswerKeyMerger:

    def merge(self, records: Sequence[QuestionRecord], answer_key: Mapping[int, str]) -> MergeReport:
        """
        Apply answer_key to records (returned as updated copies).

        Args:
            records:    Questions tagged with their nominal id
            answer_key: question_number → "A" | "B" | "C" | "D"
        """
        merged = []
        defaulted = []
        for record in records:
            answer = (answer_key.get(record.id) or "").strip().upper()
            if answer not in ANSWER_LETTERS:
                answer = DEFAULT_ANSWER
                defaulted.append(record.id)
            merged.append(record.model_copy(update={"correct_answer": answer}))

        report = MergeReport(records=merged, defaulted_ids=defaulted)
        if report.all_defaulted:
            log.warning(
                f"[MERGE] None of {report.total} question(s) matched the answer key; "
                f"all defaulted to '{DEFAULT_ANSWER}'. The answer-sheet pass likely failed."
            )
        elif report.default_count:
            log.warning(
                f"[MERGE] {report.default_count}/{report.total} question(s) defaulted to "
                f"'{DEFAULT_ANSWER}' ({report.default_ratio:.0%}): ids {defaulted[:20]}"
            )
        else:
            log.info(f"[MERGE] All {report.total} question(s) matched the answer key")
        return report
