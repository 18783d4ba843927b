"""CLI interface with subcommand routing."""

import argparse
import asyncio
import dataclasses
import logging
import shutil
import sys

from audiobook_ensemble.assembly import validate_formats
from audiobook_ensemble.config import load_settings
from audiobook_ensemble.constants import OUTPUT_DIR, OUTPUT_FORMATS, VERSION
from audiobook_ensemble.errors import AudiobookError, ValidationError
from audiobook_ensemble.models import ProgressEvent
from audiobook_ensemble.orchestrator import GenerationOrchestrator
from audiobook_ensemble.pipeline import cast_assignments, produce_audiobook, read_manuscript
from audiobook_ensemble.providers import build_providers, create_provider
from audiobook_ensemble.tts import cost_for, estimate_duration
from audiobook_ensemble.voices import filter_voices, load_cast


def _check_ffmpeg():
    """Verify ffmpeg is installed."""
    if not shutil.which("ffmpeg"):
        print("Error: ffmpeg is required but not found.", file=sys.stderr)
        print("Install with: brew install ffmpeg", file=sys.stderr)
        raise SystemExit(1)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.percent_complete:3d}%] {event.stage}: {event.message}")


def _parse_formats(raw: str) -> tuple[str, ...]:
    formats = tuple(f.strip().lower() for f in raw.split(",") if f.strip())
    if not formats:
        raise argparse.ArgumentTypeError("at least one output format is required")
    try:
        validate_formats(formats)
    except ValidationError as e:
        raise argparse.ArgumentTypeError(f"{e.detail}. {e.hint}") from e
    return formats


def cmd_produce(args):
    """Produce a multi-voice audiobook from a text file."""
    _check_ffmpeg()

    settings = load_settings()
    if args.batch_size:
        settings = dataclasses.replace(settings, batch_size=args.batch_size)

    production = asyncio.run(produce_audiobook(
        args.file,
        settings,
        formats=args.formats,
        narrator_voice=args.narrator_voice,
        output_dir=args.output_dir,
        progress=_print_progress,
    ))

    book = production.book
    print(f"Chapters: {len(book.chapters)}  Duration: {book.total_duration:.1f}s  "
          f"Cost: ${book.total_cost:.4f}")
    for path in production.paths.values():
        print(f"Done: {path}")


def cmd_voices(args):
    """List available voices."""
    settings = load_settings()
    provider = create_provider(args.provider or settings.primary_provider, settings)
    voices = asyncio.run(provider.list_voices())
    voices = filter_voices(voices, gender=args.gender, accent=args.accent)

    filter_str = args.filter.lower() if args.filter else None
    if filter_str:
        voices = [
            v for v in voices
            if filter_str in v.name.lower() or filter_str in v.id.lower()
            or any(filter_str in d for d in v.descriptors)
        ]
    if not voices:
        print("No matching voices found.")
        return
    print(f"Available voices ({provider.name}):")
    for v in voices:
        print(f"  {v.id:<32} {v.name:<24} {v.gender:<8} {v.age_bracket:<6} {v.accent}")


def cmd_match(args):
    """Show the voice each cast member would get."""
    text = read_manuscript(args.file)
    if not load_cast(args.file).characters:
        print(f"No cast file found for {args.file} (expected a .cast.json next to it).")
        print("Every unit will be read by the narrator.")

    settings = load_settings()
    primary, _ = build_providers(settings)
    pool = asyncio.run(primary.list_voices())
    assignments, failures = cast_assignments(args.file, pool, args.narrator_voice)

    print("Cast:")
    for name, a in assignments.items():
        print(f"  {name:<15} → {a.voice.name} [{a.voice.id}] "
              f"(score {a.score:.2f}, stability {a.settings.stability:.2f})")
    for name, error in failures.items():
        print(f"  {name:<15} → narrator ({error.detail})")

    minutes = estimate_duration(text) / 60
    print(f"Estimate: {len(text)} characters, ~{minutes:.1f} min, "
          f"~${cost_for(text, primary.cost_per_1k):.2f} on {primary.name}")


def cmd_health(args):
    """Check synthesis provider availability."""
    primary, fallback = build_providers(load_settings())
    results = asyncio.run(GenerationOrchestrator(primary, fallback).health_check())
    print("Providers:")
    for name, ok in results.items():
        marker = "[ok]  " if ok else "[down]"
        print(f"  {marker} {name}")
    if not all(results.values()):
        raise SystemExit(1)


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="audiobook-ensemble",
        description="Audiobook Ensemble — turn manuscripts into multi-voice audiobooks",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # produce
    produce_parser = subparsers.add_parser("produce", help="Produce an audiobook from a text file")
    produce_parser.add_argument("file", help="Path to the manuscript text file")
    produce_parser.add_argument(
        "--formats", type=_parse_formats, default=OUTPUT_FORMATS,
        help="Comma-separated output formats (default: mp3,m4b)",
    )
    produce_parser.add_argument("--batch-size", type=int, help="Units synthesized concurrently")
    produce_parser.add_argument("--narrator-voice", help="Voice id for the narrator")
    produce_parser.add_argument("--output-dir", default=OUTPUT_DIR, help="Output base directory")
    produce_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    produce_parser.set_defaults(func=cmd_produce)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--provider", help="Provider to query (default: primary)")
    voices_parser.add_argument("--gender", choices=["male", "female", "neutral"])
    voices_parser.add_argument("--accent", help="Exact accent, e.g. british")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    # match
    match_parser = subparsers.add_parser("match", help="Show cast voice assignments")
    match_parser.add_argument("file", help="Path to the manuscript text file")
    match_parser.add_argument("--narrator-voice", help="Voice id for the narrator")
    match_parser.set_defaults(func=cmd_match)

    # health
    health_parser = subparsers.add_parser("health", help="Check provider availability")
    health_parser.set_defaults(func=cmd_health)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    _configure_logging(getattr(args, "verbose", False))
    if args.command == "produce" and args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be at least 1")

    try:
        args.func(args)
    except AudiobookError as e:
        print(f"Error: {e.detail}", file=sys.stderr)
        if e.hint:
            print(e.hint, file=sys.stderr)
        raise SystemExit(1)
