"""Tests for CLI module."""

import json
import os
from unittest.mock import patch

import pytest

from audiobook_ensemble.cli import main

from conftest import FakeEngine, FakeProvider


# --- Helpers ---

def _create_story_file(tmp_path, name="story.txt", content=None, cast=None):
    """Create a test story file, optionally with a cast sidecar."""
    if content is None:
        content = 'The Test Story\n\nby Test Author\n\n"Hello," said Alice.\n\nIt was dark.'
    path = tmp_path / name
    path.write_text(content)
    if cast is not None:
        (tmp_path / (os.path.splitext(name)[0] + ".cast.json")).write_text(json.dumps(cast))
    return str(path)


def test_no_command_prints_help(capsys):
    main([])
    assert "usage" in capsys.readouterr().out.lower()


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--version"])
    assert exc.value.code == 0
    assert "0.1.0" in capsys.readouterr().out


# --- produce ---

@patch("audiobook_ensemble.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_produce_missing_file(mock_which, tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["produce", str(tmp_path / "nope.txt")])
    assert exc.value.code == 1
    assert "Error: File not found" in capsys.readouterr().err


@patch("audiobook_ensemble.cli.shutil.which", return_value=None)
def test_produce_requires_ffmpeg(mock_which, tmp_path, capsys):
    with pytest.raises(SystemExit):
        main(["produce", _create_story_file(tmp_path)])
    assert "ffmpeg" in capsys.readouterr().err


def test_produce_rejects_bad_batch_size(tmp_path):
    with pytest.raises(SystemExit) as exc:
        main(["produce", _create_story_file(tmp_path), "--batch-size", "0"])
    assert exc.value.code == 2


def test_produce_rejects_unknown_format(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["produce", _create_story_file(tmp_path), "--formats", "mp3,ogg"])
    assert exc.value.code == 2
    assert "Unsupported output format(s): ogg" in capsys.readouterr().err


@patch("audiobook_ensemble.pipeline.PydubAudioEngine", return_value=FakeEngine())
@patch("audiobook_ensemble.pipeline.build_providers")
@patch("audiobook_ensemble.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_produce_writes_outputs(mock_which, mock_build, mock_engine, tmp_path, capsys, voice_pool):
    mock_build.return_value = (FakeProvider(voices=voice_pool), FakeProvider("backup"))
    story = _create_story_file(tmp_path, cast={"cast": {"Alice": {"age": 30, "gender": "female"}}})
    output_dir = tmp_path / "output"

    main(["produce", story, "--formats", "mp3", "--batch-size", "1",
          "--output-dir", str(output_dir)])

    out = capsys.readouterr().out
    assert "[100%] complete" in out
    assert "Done:" in out
    assert (output_dir / "story" / "final" / "story.mp3").exists()
    assert not (output_dir / "story" / "final" / "story.m4b").exists()


@patch("audiobook_ensemble.pipeline.PydubAudioEngine", return_value=FakeEngine())
@patch("audiobook_ensemble.pipeline.build_providers")
@patch("audiobook_ensemble.cli.shutil.which", return_value="/usr/bin/ffmpeg")
def test_produce_unknown_narrator_voice(mock_which, mock_build, mock_engine, tmp_path, capsys,
                                        voice_pool):
    mock_build.return_value = (FakeProvider(voices=voice_pool), None)
    with pytest.raises(SystemExit) as exc:
        main(["produce", _create_story_file(tmp_path), "--narrator-voice", "missing",
              "--output-dir", str(tmp_path / "output")])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "Narrator voice 'missing'" in err
    assert "voices" in err  # hint


# --- voices ---

@patch("audiobook_ensemble.cli.create_provider")
def test_voices_lists_and_filters(mock_create, capsys, voice_pool):
    mock_create.return_value = FakeProvider(voices=voice_pool)
    main(["voices", "--gender", "male"])
    out = capsys.readouterr().out
    assert "v-narr" in out
    assert "v-old" in out
    assert "v-anna" not in out


@patch("audiobook_ensemble.cli.create_provider")
def test_voices_substring_filter(mock_create, capsys, voice_pool):
    mock_create.return_value = FakeProvider(voices=voice_pool)
    main(["voices", "--filter", "grav"])
    out = capsys.readouterr().out
    assert "v-old" in out
    assert "v-narr" not in out


@patch("audiobook_ensemble.cli.create_provider")
def test_voices_no_match(mock_create, capsys, voice_pool):
    mock_create.return_value = FakeProvider(voices=voice_pool)
    main(["voices", "--filter", "zzz"])
    assert "No matching voices found." in capsys.readouterr().out


# --- match ---

@patch("audiobook_ensemble.cli.build_providers")
def test_match_shows_cast(mock_build, tmp_path, capsys, voice_pool):
    mock_build.return_value = (FakeProvider(voices=voice_pool), None)
    story = _create_story_file(tmp_path, cast={
        "cast": {
            "Alice": {"age": 30, "gender": "female", "tone": ["warm"]},
            "Greta": {"age": 90, "gender": "female"},
        },
    })
    main(["match", story])
    out = capsys.readouterr().out
    assert "alice" in out and "v-anna" in out
    assert "Greta" in out and "narrator (" in out
    assert "Estimate:" in out


@patch("audiobook_ensemble.cli.build_providers")
def test_match_without_cast(mock_build, tmp_path, capsys, voice_pool):
    mock_build.return_value = (FakeProvider(voices=voice_pool), None)
    main(["match", _create_story_file(tmp_path)])
    assert "No cast file found" in capsys.readouterr().out


@patch("audiobook_ensemble.cli.build_providers")
def test_match_invalid_cast_file(mock_build, tmp_path, capsys, voice_pool):
    mock_build.return_value = (FakeProvider(voices=voice_pool), None)
    story = _create_story_file(tmp_path, cast={"cast": {"Alice": {"age": "thirty"}}})
    with pytest.raises(SystemExit) as exc:
        main(["match", story])
    assert exc.value.code == 1
    assert "Error: Invalid cast file" in capsys.readouterr().err


# --- health ---

@patch("audiobook_ensemble.cli.build_providers")
def test_health_all_up(mock_build, capsys):
    mock_build.return_value = (FakeProvider("elevenlabs"), FakeProvider("playht"))
    main(["health"])
    out = capsys.readouterr().out
    assert "[ok]   elevenlabs" in out
    assert "[ok]   playht" in out


@patch("audiobook_ensemble.cli.build_providers")
def test_health_reports_down_provider(mock_build, capsys):
    mock_build.return_value = (FakeProvider("elevenlabs"), FakeProvider("playht", healthy=False))
    with pytest.raises(SystemExit) as exc:
        main(["health"])
    assert exc.value.code == 1
    assert "[down] playht" in capsys.readouterr().out
