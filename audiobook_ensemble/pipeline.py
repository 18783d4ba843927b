"""End-to-end production: manuscript file in, exported audiobook out."""

import asyncio
import logging
import os
from dataclasses import dataclass

from audiobook_ensemble.assembly import AudioAssembler, validate_formats
from audiobook_ensemble.audio_engine import AudioEngine, PydubAudioEngine
from audiobook_ensemble.config import Settings
from audiobook_ensemble.constants import NARRATOR, OUTPUT_DIR, OUTPUT_FORMATS
from audiobook_ensemble.errors import ValidationError
from audiobook_ensemble.exporter import export, slug_from_path
from audiobook_ensemble.models import AssembledAudiobook, AudiobookMetadata, VoiceAssignment
from audiobook_ensemble.orchestrator import GenerationOrchestrator, ProgressSink
from audiobook_ensemble.parser import extract_metadata, split_manuscript
from audiobook_ensemble.providers import build_providers
from audiobook_ensemble.tts import SynthesisProvider
from audiobook_ensemble.voices import (
    assign_narrator,
    batch_match,
    build_assignment_map,
    load_cast,
)

logger = logging.getLogger(__name__)


@dataclass
class Production:
    book: AssembledAudiobook
    project_dir: str
    paths: dict[str, str]


def read_manuscript(path: str) -> str:
    if not os.path.exists(path):
        raise ValidationError(f"File not found: {path}", stage="analyzing")
    with open(path, encoding="utf-8") as f:
        text = f.read()
    if not text.strip():
        raise ValidationError(f"File is empty: {path}", stage="analyzing")
    return text


def cast_assignments(
    story_path: str,
    pool,
    narrator_voice: str | None = None,
) -> tuple[dict[str, VoiceAssignment], dict[str, ValidationError]]:
    """Match the story's cast file against a voice pool.

    Returns the name-keyed assignment map (narrator included) and the
    characters that could not be matched. Unmatched characters are read by
    the narrator.
    """
    cast = load_cast(story_path)
    matches, failures = batch_match(cast.characters, pool)
    narrator = assign_narrator(pool, narrator_voice or cast.narrator_voice, cast.narrator)
    return build_assignment_map([narrator, *matches], cast.aliases), failures


async def produce_audiobook(
    story_path: str,
    settings: Settings,
    formats=OUTPUT_FORMATS,
    narrator_voice: str | None = None,
    output_dir: str = OUTPUT_DIR,
    progress: ProgressSink | None = None,
    cancel_event: asyncio.Event | None = None,
    providers: tuple[SynthesisProvider, SynthesisProvider | None] | None = None,
    engine: AudioEngine | None = None,
) -> Production:
    validate_formats(formats)
    text = read_manuscript(story_path)
    title, author = extract_metadata(text)
    chapters = split_manuscript(text)
    if not chapters:
        raise ValidationError(f"No narratable text in {story_path}", stage="analyzing")

    primary, fallback = providers or build_providers(settings)
    pool = await primary.list_voices()
    assignments, failures = cast_assignments(story_path, pool, narrator_voice)
    for name, error in failures.items():
        logger.warning("%s will be read by the narrator: %s", name, error)

    orchestrator = GenerationOrchestrator(
        primary, fallback,
        batch_size=settings.batch_size,
        narrate_unknown_speakers=True,
    )
    fragments = await orchestrator.run(chapters, assignments, progress, cancel_event)

    narrator = assignments[NARRATOR].voice
    metadata = AudiobookMetadata(title=title, author=author, narrator=narrator.name)
    assembler = AudioAssembler(
        engine or PydubAudioEngine(sample_rate=settings.sample_rate),
        target_lufs=settings.target_lufs,
        bitrate=settings.bitrate,
        sample_rate=settings.sample_rate,
    )
    book = await assembler.assemble(fragments, metadata, formats)

    slug = slug_from_path(story_path)
    project_dir = os.path.join(output_dir, slug)
    paths = export(book, project_dir, slug, extra={
        "source": os.path.abspath(story_path),
        "providers": sorted({f.provider for f in fragments}),
        "cast": {
            name: {"voice": a.voice.id, "provider": a.voice.provider, "score": round(a.score, 2)}
            for name, a in assignments.items()
        },
    })
    return Production(book=book, project_dir=project_dir, paths=paths)
