"""Tests for exporter module."""

import json
import os

from audiobook_ensemble.exporter import export, slug_from_path
from audiobook_ensemble.models import AssembledAudiobook, AudiobookMetadata, ChapterMarker


def _make_book():
    return AssembledAudiobook(
        outputs={"mp3": b"mp3-data", "m4b": b"m4b-data"},
        total_duration=12.34,
        total_cost=0.01234,
        chapters=(
            ChapterMarker(number=1, title="Chapter 1", start_seconds=0.0, duration_seconds=5.0),
            ChapterMarker(number=2, title="Chapter 2", start_seconds=5.0, duration_seconds=7.34),
        ),
        metadata=AudiobookMetadata(title="Test Story", author="Test Author", narrator="Roger"),
    )


def test_slug_from_path():
    assert slug_from_path("Tell-Tale Heart.txt") == "tell_tale_heart"
    assert slug_from_path("/path/to/The Open Window.txt") == "the_open_window"


def test_export_writes_every_format(tmp_path):
    project_dir = str(tmp_path / "project")
    paths = export(_make_book(), project_dir, "test_story")
    assert set(paths) == {"mp3", "m4b"}
    assert paths["mp3"].endswith(os.path.join("final", "test_story.mp3"))
    with open(paths["m4b"], "rb") as f:
        assert f.read() == b"m4b-data"


def test_export_manifest(tmp_path):
    project_dir = str(tmp_path / "project")
    export(_make_book(), project_dir, "test_story", extra={"source": "story.txt"})

    with open(os.path.join(project_dir, "final", "output.json")) as f:
        manifest = json.load(f)

    assert manifest["project"] == "test_story"
    assert manifest["metadata"]["narrator"] == "Roger"
    assert manifest["chapters"][1]["start_seconds"] == 5.0
    assert manifest["files"] == {"mp3": "test_story.mp3", "m4b": "test_story.m4b"}
    assert manifest["stats"] == {"duration_seconds": 12.3, "cost": 0.0123, "chapters": 2}
    assert manifest["source"] == "story.txt"
    assert "generated_at" in manifest
    assert "producer_version" in manifest
