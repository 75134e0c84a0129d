"""
Bulk generation orchestrator — "generate exactly N questions".

A single model reply cannot reliably hold 100 passages + questions, so the
request is split:

  Phase 1  ceil(N / batch_size) batches of at most batch_size, each starting
           at id len(accumulated) + 1. Short or failed batches are logged and
           left for phase 2.
  Phase 2  fill loop: request min(fill_batch_size, missing) until N is met or
           retry_count reaches max_retries. A full fill batch resets
           retry_count; a partial batch or an error increments it, so a
           provider that keeps returning one item cannot loop forever.
  Final    trim to N, renumber 1..len, report any shortfall.

Calls are strictly sequential with a configurable delay between them to stay
under provider rate limits.
"""

import asyncio
import logging
import math
import warnings
from typing import List, Optional

from quiz_engine.config import GenerationSettings, ProviderConfig
from quiz_engine.errors import (
    ConfigurationError,
    CountShortfallWarning,
    GenerationError,
    ParseError,
    ProviderError,
)
from quiz_engine.gateway import InvocationOptions, ProviderGateway
from quiz_engine.parser import ResponseParser
from quiz_engine.prompts import JSON_MODE_SYSTEM_PROMPT, build_prompt, max_tokens_for_batch
from quiz_engine.schemas import (
    ExtractionTask,
    GenerationBatchState,
    GenerationEvent,
    GenerationResult,
    QuestionRecord,
)

log = logging.getLogger("quiz_engine.orchestrator")


def plan_initial_batches(target_count: int, batch_size: int) -> List[int]:
    """Batch sizes phase 1 requests when every batch delivers in full."""
    sizes = []
    remaining = target_count
    for _ in range(math.ceil(target_count / batch_size)):
        sizes.append(min(batch_size, remaining))
        remaining -= sizes[-1]
    return sizes


class BatchGenerationOrchestrator:

    def __init__(
        self,
        gateway: Optional[ProviderGateway] = None,
        parser: Optional[ResponseParser] = None,
        settings: Optional[GenerationSettings] = None,
    ):
        self.gateway = gateway or ProviderGateway()
        self.parser = parser or ResponseParser()
        self.settings = settings or GenerationSettings()

    async def generate_batch(self, count: int, start_id: int, config: ProviderConfig) -> List[QuestionRecord]:
        """
        One prompt → gateway → parser cycle.

        Raises:
            ProviderError / ParseError: the batch failed; callers fold this into retries
        """
        prompt = build_prompt(ExtractionTask.BULK_GENERATION, count=count, start_id=start_id)
        raw = await self.gateway.invoke(
            prompt,
            None,
            config,
            InvocationOptions(
                system_prompt=JSON_MODE_SYSTEM_PROMPT,
                temperature=0.7,
                max_tokens=max_tokens_for_batch(count),
                json_mode=True,
            ),
        )
        outcome = self.parser.parse(
            raw, ExtractionTask.BULK_GENERATION, expected_count=count, start_id=start_id
        )
        candidates, _diagnostics = outcome.unwrap()
        return [
            QuestionRecord.from_candidate(c, record_id=c.question_number or start_id + i, kind="reading")
            for i, c in enumerate(candidates)
        ]

    async def _pause(self) -> None:
        if self.settings.delay_seconds > 0:
            await asyncio.sleep(self.settings.delay_seconds)

    async def generate(self, target_count: int, config: ProviderConfig) -> GenerationResult:
        """
        Generate target_count reading-comprehension questions.

        Returns:
            GenerationResult with at most target_count records; result.shortfall > 0
            (plus a CountShortfallWarning) when retries ran out first.

        Raises:
            ValueError:         target_count outside [1, max_count]
            ConfigurationError: provider credentials missing (checked before any call)
            GenerationError:    not a single record could be produced
        """
        s = self.settings
        if not 1 <= target_count <= s.max_count:
            raise ValueError(f"target_count must be between 1 and {s.max_count}, got {target_count}")
        config.require_configured()

        state = GenerationBatchState(target_count=target_count)
        result = GenerationResult(records=[], target_count=target_count)
        last_error: Optional[Exception] = None

        # ── Phase 1: initial batches ──────────────────────────────────────────
        plan = plan_initial_batches(target_count, s.batch_size)
        total_batches = len(plan)
        log.info(f"[GENERATE] {target_count} questions in {total_batches} batch(es) {plan}")
        for i in range(total_batches):
            count = min(s.batch_size, state.missing)
            if count <= 0:
                break
            start_id = state.next_id
            tag = f"[BATCH {i + 1}/{total_batches}]"
            log.info(f"{tag} Generating {count} questions from id {start_id}...")
            result.initial_batch_sizes.append(count)

            try:
                batch = await self.generate_batch(count, start_id, config)
            except ConfigurationError:
                raise
            except (ProviderError, ParseError) as e:
                last_error = e
                log.error(f"{tag} Failed: {e}")
                result.events.append(GenerationEvent(
                    kind="error", phase="initial", batch_index=i, requested=count,
                    start_id=start_id, message=str(e),
                ))
            else:
                self._accumulate(state, batch, start_id, result, phase="initial", batch_index=i)
                if len(batch) < count:
                    log.warning(f"{tag} Generated {len(batch)} questions, expected {count}")
                result.events.append(GenerationEvent(
                    kind="batch", phase="initial", batch_index=i, requested=count,
                    received=len(batch), start_id=start_id,
                ))

            if i < total_batches - 1:
                await self._pause()

        # ── Phase 2: fill missing ─────────────────────────────────────────────
        while state.missing > 0 and state.consecutive_fill_failures < s.max_retries:
            missing = state.missing
            count = min(s.fill_batch_size, missing)
            start_id = state.next_id
            attempt = state.consecutive_fill_failures + 1
            log.info(f"[FILL] Filling {missing} missing questions (attempt {attempt}/{s.max_retries})...")
            result.fill_batch_sizes.append(count)

            try:
                batch = await self.generate_batch(count, start_id, config)
            except ConfigurationError:
                raise
            except (ProviderError, ParseError) as e:
                last_error = e
                state.consecutive_fill_failures += 1
                log.error(f"[FILL] Error filling missing questions: {e}")
                result.events.append(GenerationEvent(
                    kind="error", phase="fill", requested=count, start_id=start_id,
                    retry_count=state.consecutive_fill_failures, message=str(e),
                ))
            else:
                self._accumulate(state, batch, start_id, result, phase="fill")
                if len(batch) < count:
                    state.consecutive_fill_failures += 1
                    log.warning(f"[FILL] Fill batch generated {len(batch)} questions, expected {count}")
                else:
                    state.consecutive_fill_failures = 0
                result.events.append(GenerationEvent(
                    kind="fill", phase="fill", requested=count, received=len(batch),
                    start_id=start_id, retry_count=state.consecutive_fill_failures,
                ))

            await self._pause()

        if state.missing > 0:
            log.warning(f"[FILL] Stopped trying to fill missing questions after {s.max_retries} attempts")

        # ── Final trim & report ───────────────────────────────────────────────
        records = state.accumulated[:target_count]
        result.records = [r.model_copy(update={"id": n}) for n, r in enumerate(records, start=1)]

        if not result.records:
            raise GenerationError(
                f"Failed to generate reading questions: no batch produced any records"
                f"{f' (last error: {last_error})' if last_error else ''}"
            ) from last_error

        if result.shortfall:
            result.events.append(GenerationEvent(
                kind="shortfall", phase="final", requested=target_count,
                received=len(result.records), message=f"{result.shortfall} missing",
            ))
            log.warning(
                f"[GENERATE] Generated {len(result.records)} out of {target_count} requested questions "
                f"({result.shortfall} missing after {s.max_retries} retry attempts)"
            )
            warnings.warn(CountShortfallWarning(target_count, len(result.records)), stacklevel=2)
        else:
            result.events.append(GenerationEvent(
                kind="complete", phase="final", requested=target_count, received=target_count,
            ))
            log.info(f"[GENERATE] Successfully generated all {target_count} questions")

        return result

    def _accumulate(
        self,
        state: GenerationBatchState,
        batch: List[QuestionRecord],
        start_id: int,
        result: GenerationResult,
        phase: str,
        batch_index: Optional[int] = None,
    ) -> None:
        expected_ids = list(range(start_id, start_id + len(batch)))
        actual_ids = [r.id for r in batch]
        if actual_ids != expected_ids:
            log.warning(f"[{phase.upper()}] Non-sequential ids {actual_ids[:5]}... (expected from {start_id}); renumbering")
            result.events.append(GenerationEvent(
                kind="id_mismatch", phase=phase, batch_index=batch_index,
                requested=len(batch), received=len(batch), start_id=start_id,
                message=f"ids {actual_ids[:10]}",
            ))
        state.accumulated.extend(batch)
