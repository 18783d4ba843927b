"""Batched, concurrent speech generation with primary/fallback providers.

Units are dispatched in fixed-size batches: every unit in a batch runs
concurrently, and the next batch starts only when the whole batch is done.
Finished fragments land in a buffer keyed by sequence number, so the output
order never depends on which provider call returned first.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from audiobook_ensemble.constants import (
    BATCH_SIZE,
    NARRATOR,
    PROGRESS_ANALYZED,
    PROGRESS_COMPLETE,
    PROGRESS_FINALIZING,
    PROGRESS_GENERATION_SPAN,
    PROGRESS_GENERATION_START,
)
from audiobook_ensemble.errors import (
    ExhaustionError,
    GenerationCancelled,
    MissingAssignmentError,
    ProviderError,
    ProviderTimeoutError,
    ValidationError,
)
from audiobook_ensemble.models import (
    Chapter,
    NarrationUnit,
    ProgressEvent,
    SynthesizedAudio,
    SynthesizedFragment,
    VoiceAssignment,
)
from audiobook_ensemble.parser import EmotionClassifier, segment_chapters
from audiobook_ensemble.tts import SynthesisProvider
from audiobook_ensemble.voices import build_assignment_map

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class Attempt:
    """Outcome of one provider call for one unit."""
    provider: str
    audio: SynthesizedAudio | None = None
    error: ProviderError | None = None

    @property
    def succeeded(self) -> bool:
        return self.audio is not None


class _Progress:
    """Forwards events to the caller's sink with a non-decreasing percent."""

    def __init__(self, sink: ProgressSink | None):
        self.sink = sink
        self.percent = 0

    def emit(self, stage: str, percent: int, message: str, **counters) -> None:
        self.percent = max(self.percent, percent)
        if self.sink is None:
            return
        event = ProgressEvent(
            stage=stage, percent_complete=self.percent, message=message, **counters
        )
        try:
            self.sink(event)
        except Exception:
            logger.exception("Progress sink failed on '%s' event", stage)

    def error(self, message: str) -> None:
        self.emit("error", self.percent, message)


class GenerationOrchestrator:
    """Turns narration units into ordered audio fragments.

    The primary provider is always tried first, whatever provider the unit's
    voice came from; the fallback gets one attempt when the primary fails.
    A unit that fails on both aborts the whole run.
    """

    def __init__(
        self,
        primary: SynthesisProvider,
        fallback: SynthesisProvider | None = None,
        batch_size: int = BATCH_SIZE,
        narrate_unknown_speakers: bool = False,
    ):
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1", stage="generating")
        self.primary = primary
        self.fallback = fallback
        self.batch_size = batch_size
        self.narrate_unknown_speakers = narrate_unknown_speakers

    @property
    def providers(self) -> list[SynthesisProvider]:
        return [p for p in (self.primary, self.fallback) if p is not None]

    async def health_check(self) -> dict[str, bool]:
        """Probe every configured provider concurrently."""
        providers = self.providers
        results = await asyncio.gather(*(p.health_check() for p in providers))
        return {p.name: ok for p, ok in zip(providers, results)}

    async def run(
        self,
        chapters: list[Chapter],
        assignments,
        progress: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
        classify_emotion: EmotionClassifier | None = None,
    ) -> list[SynthesizedFragment]:
        """Segment chapters, then generate audio for every unit."""
        tracker = _Progress(progress)
        try:
            units = segment_chapters(chapters, classify_emotion=classify_emotion)
        except Exception as e:
            tracker.error(f"Segmentation failed: {e}")
            raise
        tracker.emit(
            "analyzing",
            PROGRESS_ANALYZED,
            f"Segmented {len(chapters)} chapters into {len(units)} units",
            total_chapters=len(chapters),
            total_segments=len(units),
        )
        return await self._generate(units, assignments, tracker, cancel_event)

    async def generate(
        self,
        units: list[NarrationUnit],
        assignments,
        progress: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[SynthesizedFragment]:
        """Synthesize every unit and return fragments in sequence order.

        ``assignments`` is a list of VoiceAssignment or a name-keyed map from
        build_assignment_map(). Raises MissingAssignmentError before any
        provider call, ExhaustionError when both providers fail a unit and
        GenerationCancelled when ``cancel_event`` is set mid-run.
        """
        return await self._generate(units, assignments, _Progress(progress), cancel_event)

    async def _generate(self, units, assignments, tracker, cancel_event):
        try:
            plan = self._resolve(units, assignments)
            fragments = await self._generate_batches(plan, tracker, cancel_event)
        except (Exception, asyncio.CancelledError) as e:
            logger.error("Audiobook generation failed: %s", e)
            tracker.error(f"Generation failed: {e}")
            raise

        tracker.emit("finalizing", PROGRESS_FINALIZING, "Finalizing audio fragments")
        tracker.emit("complete", PROGRESS_COMPLETE, "Audio generation complete")
        return fragments

    def _resolve(self, units, assignments) -> list[tuple[NarrationUnit, VoiceAssignment]]:
        if not isinstance(assignments, dict):
            assignments = build_assignment_map(list(assignments))

        plan = []
        seen = set()
        for unit in units:
            if unit.sequence in seen:
                raise ValidationError(
                    f"Duplicate sequence number {unit.sequence}", stage="generating",
                )
            seen.add(unit.sequence)

            key = unit.speaker.lower() if unit.speaker else NARRATOR
            assignment = assignments.get(key)
            if assignment is None and unit.speaker and self.narrate_unknown_speakers:
                logger.warning(
                    "No voice for speaker '%s' (unit %d), using narrator",
                    unit.speaker, unit.sequence,
                )
                assignment = assignments.get(NARRATOR)
            if assignment is None:
                raise MissingAssignmentError(unit.speaker, unit.sequence)
            plan.append((unit, assignment))
        return plan

    async def _generate_batches(self, plan, tracker, cancel_event):
        total = len(plan)
        buffer: dict[int, SynthesizedFragment] = {}

        tracker.emit(
            "generating",
            PROGRESS_GENERATION_START,
            f"Generating {total} audio fragments",
            current_segment=0,
            total_segments=total,
        )

        for start in range(0, total, self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled(len(buffer), total)

            batch = plan[start:start + self.batch_size]
            for fragment in await self._run_batch(batch, cancel_event, len(buffer), total):
                buffer[fragment.sequence] = fragment

            done = len(buffer)
            tracker.emit(
                "generating",
                PROGRESS_GENERATION_START + round(PROGRESS_GENERATION_SPAN * done / total),
                f"Generated {done}/{total} fragments",
                current_chapter=batch[-1][0].chapter,
                current_segment=done,
                total_segments=total,
            )

        return [buffer[sequence] for sequence in sorted(buffer)]

    async def _run_batch(self, batch, cancel_event, completed, total):
        tasks = [
            asyncio.ensure_future(self._synthesize_unit(unit, assignment))
            for unit, assignment in batch
        ]
        batch_future = asyncio.gather(*tasks)
        waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        try:
            pending = {batch_future} if waiter is None else {batch_future, waiter}
            await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            if batch_future.done():
                return batch_future.result()
            logger.info("Cancellation requested, aborting %d in-flight calls", len(tasks))
            raise GenerationCancelled(completed, total)
        finally:
            if waiter is not None:
                waiter.cancel()
            # siblings of a failed or cancelled batch must not outlive it
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _attempt(self, provider, unit, assignment) -> Attempt:
        try:
            audio = await asyncio.wait_for(
                provider.synthesize(
                    unit.text, assignment.voice.id, assignment.settings, unit.emotion,
                ),
                provider.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return Attempt(
                provider.name,
                error=ProviderTimeoutError(provider.name, provider.timeout_seconds),
            )
        except ProviderError as e:
            return Attempt(provider.name, error=e)
        return Attempt(provider.name, audio=audio)

    async def _synthesize_unit(self, unit, assignment) -> SynthesizedFragment:
        attempts = []
        for provider in self.providers:
            attempt = await self._attempt(provider, unit, assignment)
            if attempt.succeeded:
                return SynthesizedFragment(
                    sequence=unit.sequence,
                    audio=attempt.audio.audio,
                    format=attempt.audio.format,
                    duration_seconds=attempt.audio.duration_seconds,
                    cost=attempt.audio.cost,
                    provider=attempt.provider,
                )
            attempts.append(attempt)
            logger.warning(
                "%s failed for unit %d: %s", attempt.provider, unit.sequence, attempt.error,
            )

        logger.error("All providers failed for unit %d", unit.sequence)
        raise ExhaustionError(unit.sequence, [a.error for a in attempts])
