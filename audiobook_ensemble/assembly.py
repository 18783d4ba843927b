"""Assemble synthesized fragments into a normalized, chapter-marked audiobook."""

import asyncio
import logging

from audiobook_ensemble.audio_engine import AudioEngine
from audiobook_ensemble.constants import (
    OUTPUT_BITRATE,
    OUTPUT_FORMATS,
    OUTPUT_SAMPLE_RATE,
    TARGET_LUFS,
    WORK_FORMAT,
)
from audiobook_ensemble.errors import AudioEngineError, AudiobookError, ValidationError
from audiobook_ensemble.models import (
    AssembledAudiobook,
    AudiobookMetadata,
    ChapterMarker,
    SynthesizedFragment,
)

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("mp3", "m4b", "wav")


def validate_formats(formats) -> None:
    """Raise ValidationError unless every requested format can be encoded."""
    unsupported = [f for f in formats if f not in SUPPORTED_FORMATS]
    if unsupported or not formats:
        raise ValidationError(
            f"Unsupported output format(s): {', '.join(unsupported) or '(none)'}",
            stage="assembling",
            hint=f"Choose from: {', '.join(SUPPORTED_FORMATS)}.",
        )


def order_fragments(fragments: list[SynthesizedFragment]) -> list[SynthesizedFragment]:
    """Sort by sequence number. Two fragments with one number is an error."""
    ordered = sorted(fragments, key=lambda f: f.sequence)
    for prev, curr in zip(ordered, ordered[1:]):
        if prev.sequence == curr.sequence:
            raise ValidationError(
                f"Duplicate fragment for sequence {curr.sequence}", stage="assembling",
            )
    return ordered


def chapter_markers(ordered: list[SynthesizedFragment]) -> list[ChapterMarker]:
    """One marker per fragment, starting where the previous one ended.

    Fragments are narration units (usually paragraphs), so "Chapter N" counts
    units rather than the manuscript's own chapters.
    """
    markers = []
    offset = 0.0
    for number, fragment in enumerate(ordered, start=1):
        markers.append(ChapterMarker(
            number=number,
            title=f"Chapter {number}",
            start_seconds=offset,
            duration_seconds=fragment.duration_seconds,
        ))
        offset += fragment.duration_seconds
    return markers


class AudioAssembler:
    def __init__(
        self,
        engine: AudioEngine,
        target_lufs: float = TARGET_LUFS,
        bitrate: str = OUTPUT_BITRATE,
        sample_rate: int = OUTPUT_SAMPLE_RATE,
    ):
        self.engine = engine
        self.target_lufs = target_lufs
        self.bitrate = bitrate
        self.sample_rate = sample_rate

    async def _engine_call(self, what: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except AudiobookError:
            raise
        except Exception as e:
            raise AudioEngineError(f"Audio engine failed during {what}: {e}") from e

    async def assemble(
        self,
        fragments: list[SynthesizedFragment],
        metadata: AudiobookMetadata,
        formats=OUTPUT_FORMATS,
    ) -> AssembledAudiobook:
        """Normalize, join and encode fragments into every requested format.

        Fragments may arrive in any order; output always follows sequence
        numbers. Any engine failure aborts the whole assembly.
        """
        validate_formats(formats)
        if not fragments:
            raise ValidationError("No audio fragments to assemble", stage="assembling")

        ordered = order_fragments(fragments)
        logger.info("Normalizing %d fragments to %.1f LUFS", len(ordered), self.target_lufs)
        normalized = await asyncio.gather(*(
            self._engine_call(
                f"normalization of fragment {f.sequence}",
                self.engine.normalize, f.audio, f.format, self.target_lufs,
            )
            for f in ordered
        ))

        markers = chapter_markers(ordered)
        combined = await self._engine_call(
            "concatenation", self.engine.concatenate, list(normalized), WORK_FORMAT,
        )

        outputs = {}
        for fmt in formats:
            logger.info("Encoding %s at %s", fmt, self.bitrate)
            outputs[fmt] = await self._engine_call(
                f"{fmt} encoding",
                self.engine.encode,
                combined, WORK_FORMAT, fmt, self.bitrate, self.sample_rate, metadata, markers,
            )

        total_duration = sum(f.duration_seconds for f in ordered)
        total_cost = sum(f.cost for f in ordered)
        logger.info(
            "Assembled %d fragments: %.1fs, $%.4f", len(ordered), total_duration, total_cost,
        )
        return AssembledAudiobook(
            outputs=outputs,
            total_duration=total_duration,
            total_cost=total_cost,
            chapters=tuple(markers),
            metadata=metadata,
        )
