"""Audio codec/filter engine: loudness normalization, concatenation, encoding.

The assembler only talks to the AudioEngine interface. PydubAudioEngine
backs it with pydub for decode/concat and drives ffmpeg directly for the
loudnorm filter and the chaptered m4b container.
"""

import io
import logging
import os
import subprocess
import tempfile
from abc import ABC, abstractmethod

from pydub import AudioSegment

from audiobook_ensemble.constants import (
    LOUDNESS_RANGE,
    OUTPUT_SAMPLE_RATE,
    TRUE_PEAK_DB,
    WORK_FORMAT,
)
from audiobook_ensemble.errors import AudioEngineError
from audiobook_ensemble.models import AudiobookMetadata, ChapterMarker

logger = logging.getLogger(__name__)

_MAX_STDERR_CHARS = 500


class AudioEngine(ABC):
    """Synchronous audio operations. Every failure raises AudioEngineError."""

    @abstractmethod
    def normalize(self, audio: bytes, fmt: str, target_lufs: float) -> bytes:
        """Loudness-normalize one clip; returns WORK_FORMAT bytes."""

    @abstractmethod
    def concatenate(self, chunks: list[bytes], fmt: str) -> bytes:
        """Join clips end to end in list order; returns WORK_FORMAT bytes."""

    @abstractmethod
    def encode(
        self,
        audio: bytes,
        fmt: str,
        target_format: str,
        bitrate: str,
        sample_rate: int,
        metadata: AudiobookMetadata | None = None,
        chapters: list[ChapterMarker] | None = None,
    ) -> bytes:
        """Encode a finished stream into a delivery format."""


def _escape_ffmetadata(text: str) -> str:
    """Escape =, ;, #, backslash and newlines for an FFMETADATA1 file."""
    text = text.replace("\\", "\\\\")  # must be first
    text = text.replace("=", "\\=")
    text = text.replace(";", "\\;")
    text = text.replace("#", "\\#")
    text = text.replace("\n", "\\\n")
    return text


def metadata_tags(metadata: AudiobookMetadata) -> dict[str, str]:
    """Container tags for an audiobook, empty fields left out."""
    tags = {
        "title": metadata.title,
        "album": metadata.title,
        "artist": metadata.author,
        "album_artist": metadata.author,
        "composer": metadata.narrator,
        "genre": "Audiobook",
        "language": metadata.language,
        "publisher": metadata.publisher,
        "date": metadata.publication_date,
    }
    if metadata.subtitle:
        tags["subtitle"] = metadata.subtitle
    if metadata.series:
        series = metadata.series
        if metadata.series_number is not None:
            series += f" #{metadata.series_number}"
        tags["grouping"] = series
    if metadata.isbn:
        tags["isbn"] = metadata.isbn
    return {k: v for k, v in tags.items() if v}


def build_ffmetadata(
    metadata: AudiobookMetadata | None,
    chapters: list[ChapterMarker],
) -> str:
    """FFMETADATA1 document with global tags and millisecond chapter spans."""
    lines = [";FFMETADATA1"]
    if metadata is not None:
        for key, value in metadata_tags(metadata).items():
            lines.append(f"{key}={_escape_ffmetadata(value)}")

    for chapter in chapters:
        start = round(chapter.start_seconds * 1000)
        end = round((chapter.start_seconds + chapter.duration_seconds) * 1000)
        lines.append("")
        lines.append("[CHAPTER]")
        lines.append("TIMEBASE=1/1000")
        lines.append(f"START={start}")
        lines.append(f"END={end}")
        lines.append(f"title={_escape_ffmetadata(chapter.title)}")

    return "\n".join(lines) + "\n"


class PydubAudioEngine(AudioEngine):
    """pydub + ffmpeg implementation. Scratch files never outlive a call."""

    def __init__(self, sample_rate: int = OUTPUT_SAMPLE_RATE,
                 true_peak: float = TRUE_PEAK_DB, loudness_range: float = LOUDNESS_RANGE):
        self.sample_rate = sample_rate
        self.true_peak = true_peak
        self.loudness_range = loudness_range

    def _run_ffmpeg(self, args: list[str], what: str) -> None:
        command = [AudioSegment.converter, "-y", "-hide_banner", "-loglevel", "error", *args]
        logger.debug("Running %s", " ".join(command))
        try:
            subprocess.run(command, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise AudioEngineError(
                "ffmpeg is not available on PATH",
                hint="Install ffmpeg (e.g. 'brew install ffmpeg' or 'apt install ffmpeg').",
            ) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "no stderr output").strip()[:_MAX_STDERR_CHARS]
            raise AudioEngineError(f"ffmpeg {what} failed: {stderr}") from e

    def _decode(self, audio: bytes, fmt: str) -> AudioSegment:
        try:
            return AudioSegment.from_file(io.BytesIO(audio), format=fmt)
        except Exception as e:
            raise AudioEngineError(f"Could not decode {fmt} audio ({len(audio)} bytes)") from e

    def normalize(self, audio, fmt, target_lufs):
        loudnorm = f"loudnorm=I={target_lufs:g}:TP={self.true_peak:g}:LRA={self.loudness_range:g}"
        with tempfile.TemporaryDirectory(prefix="audiobook-norm-") as tmp:
            source = os.path.join(tmp, f"input.{fmt}")
            target = os.path.join(tmp, f"normalized.{WORK_FORMAT}")
            with open(source, "wb") as f:
                f.write(audio)
            # loudnorm resamples to 192kHz internally, so pin the output rate
            self._run_ffmpeg(
                ["-i", source, "-af", loudnorm, "-ar", str(self.sample_rate), target],
                "loudness normalization",
            )
            with open(target, "rb") as f:
                return f.read()

    def concatenate(self, chunks, fmt):
        combined = AudioSegment.empty()
        for chunk in chunks:
            combined += self._decode(chunk, fmt)
        buffer = io.BytesIO()
        combined.export(buffer, format=WORK_FORMAT)
        return buffer.getvalue()

    def encode(self, audio, fmt, target_format, bitrate, sample_rate,
               metadata=None, chapters=None):
        if target_format == "m4b":
            return self._encode_m4b(audio, fmt, bitrate, sample_rate, metadata, chapters or [])

        segment = self._decode(audio, fmt)
        tags = metadata_tags(metadata) if metadata is not None else None
        buffer = io.BytesIO()
        try:
            segment.export(
                buffer,
                format=target_format,
                bitrate=bitrate,
                tags=tags,
                parameters=["-ar", str(sample_rate)],
            )
        except Exception as e:
            raise AudioEngineError(f"Encoding to {target_format} failed: {e}") from e
        return buffer.getvalue()

    def _encode_m4b(self, audio, fmt, bitrate, sample_rate, metadata, chapters):
        with tempfile.TemporaryDirectory(prefix="audiobook-m4b-") as tmp:
            source = os.path.join(tmp, f"book.{fmt}")
            chapter_file = os.path.join(tmp, "chapters.txt")
            target = os.path.join(tmp, "book.m4b")
            with open(source, "wb") as f:
                f.write(audio)
            with open(chapter_file, "w", encoding="utf-8") as f:
                f.write(build_ffmetadata(metadata, chapters))

            self._run_ffmpeg(
                [
                    "-i", source,
                    "-i", chapter_file,
                    "-map", "0:a",
                    "-map_metadata", "1",
                    "-map_chapters", "1",
                    "-c:a", "aac",
                    "-b:a", bitrate,
                    "-ar", str(sample_rate),
                    "-f", "ipod",
                    target,
                ],
                "m4b encoding",
            )
            with open(target, "rb") as f:
                return f.read()
