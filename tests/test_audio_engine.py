"""Tests for the pydub/ffmpeg audio engine."""

import io
import os
import shutil
import subprocess
from unittest.mock import patch

import pytest
from pydub import AudioSegment

from audiobook_ensemble.audio_engine import (
    PydubAudioEngine,
    build_ffmetadata,
    metadata_tags,
)
from audiobook_ensemble.errors import AudioEngineError
from audiobook_ensemble.models import AudiobookMetadata, ChapterMarker

from conftest import make_tone, wav_bytes

needs_ffmpeg = pytest.mark.skipif(not shutil.which("ffmpeg"), reason="ffmpeg not installed")


def _metadata(**kwargs):
    return AudiobookMetadata(title="Test Story", author="Test Author", narrator="Roger", **kwargs)


def test_concatenate_preserves_order_and_length():
    short = wav_bytes(make_tone(100))
    long = wav_bytes(make_tone(300))
    result = PydubAudioEngine().concatenate([short, long], "wav")
    combined = AudioSegment.from_file(io.BytesIO(result), format="wav")
    assert abs(len(combined) - 400) < 5


def test_concatenate_rejects_garbage():
    with pytest.raises(AudioEngineError):
        PydubAudioEngine().concatenate([b"not audio"], "wav")


def test_ffmetadata_chapters():
    chapters = [
        ChapterMarker(number=1, title="Chapter 1", start_seconds=0.0, duration_seconds=1.5),
        ChapterMarker(number=2, title="Chapter 2", start_seconds=1.5, duration_seconds=2.0),
    ]
    text = build_ffmetadata(_metadata(), chapters)
    assert text.startswith(";FFMETADATA1\n")
    assert "title=Test Story" in text
    assert text.count("[CHAPTER]") == 2
    assert "START=1500\nEND=3500" in text


def test_ffmetadata_escapes_special_characters():
    text = build_ffmetadata(AudiobookMetadata(title="A=B; #1", author="X"), [])
    assert "title=A\\=B\\; \\#1" in text


def test_metadata_tags_skip_empty_fields():
    tags = metadata_tags(_metadata(series="Tales", series_number=2))
    assert tags["artist"] == "Test Author"
    assert tags["composer"] == "Roger"
    assert tags["grouping"] == "Tales #2"
    assert "publisher" not in tags
    assert "isbn" not in tags


def test_missing_ffmpeg_becomes_engine_error(tone_wav):
    with patch("audiobook_ensemble.audio_engine.subprocess.run", side_effect=FileNotFoundError):
        with pytest.raises(AudioEngineError) as exc:
            PydubAudioEngine().normalize(tone_wav, "wav", -23.0)
    assert exc.value.hint


def test_ffmpeg_failure_becomes_engine_error(tone_wav):
    error = subprocess.CalledProcessError(1, ["ffmpeg"], stderr="Invalid argument")
    with patch("audiobook_ensemble.audio_engine.subprocess.run", side_effect=error):
        with pytest.raises(AudioEngineError, match="Invalid argument"):
            PydubAudioEngine().encode(tone_wav, "wav", "m4b", "64k", 22050)


def test_temp_files_removed_on_failure(tone_wav, tmp_path):
    """Scratch directory is cleaned up even when ffmpeg fails."""
    error = subprocess.CalledProcessError(1, ["ffmpeg"], stderr="boom")
    with patch("audiobook_ensemble.audio_engine.tempfile.tempdir", str(tmp_path)), \
            patch("audiobook_ensemble.audio_engine.subprocess.run", side_effect=error):
        with pytest.raises(AudioEngineError):
            PydubAudioEngine().normalize(tone_wav, "wav", -23.0)
    assert os.listdir(tmp_path) == []


@needs_ffmpeg
def test_normalize_returns_wav(tone_wav):
    result = PydubAudioEngine(sample_rate=22050).normalize(tone_wav, "wav", -23.0)
    segment = AudioSegment.from_file(io.BytesIO(result), format="wav")
    assert segment.frame_rate == 22050
    assert abs(len(segment) - 200) < 50


@needs_ffmpeg
def test_encode_mp3(tone_wav):
    result = PydubAudioEngine().encode(tone_wav, "wav", "mp3", "64k", 44100, _metadata())
    assert len(result) > 0
    segment = AudioSegment.from_file(io.BytesIO(result), format="mp3")
    assert len(segment) > 0


@needs_ffmpeg
def test_encode_m4b_with_chapters(tone_wav):
    chapters = [ChapterMarker(number=1, title="Chapter 1", start_seconds=0.0, duration_seconds=0.2)]
    result = PydubAudioEngine().encode(tone_wav, "wav", "m4b", "64k", 44100, _metadata(), chapters)
    assert b"ftyp" in result[:64]
