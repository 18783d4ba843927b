"""Tests for parser module."""

import pytest

from audiobook_ensemble.models import Chapter, Emotion
from audiobook_ensemble.parser import (
    extract_metadata,
    extract_speaker,
    is_dialogue,
    segment_chapters,
    split_manuscript,
    split_paragraphs,
)


def test_extract_metadata():
    """Title and author extracted from header."""
    text = "The Tell-Tale Heart\n\nby Edgar Allan Poe\n\nTRUE! -- nervous..."
    title, author = extract_metadata(text)
    assert title == "The Tell-Tale Heart"
    assert author == "Edgar Allan Poe"


def test_extract_metadata_fallback():
    """No 'by' line falls back to defaults."""
    text = "Just a random paragraph with no clear metadata."
    assert extract_metadata(text) == ("Untitled", "Unknown Author")


# --- Paragraph splitting / classification ---

def test_split_paragraphs_drops_blank_candidates():
    text = "First.\n\n   \n\nSecond.\n  \nThird."
    assert split_paragraphs(text) == ["First.", "Second.", "Third."]


def test_dialogue_needs_quote_and_verb():
    assert is_dialogue('"Hello," said John.')
    assert not is_dialogue('"Hello."')
    assert not is_dialogue("He said nothing at all.")


def test_curly_quotes_count_as_dialogue():
    assert is_dialogue("“Run!” shouted Mary.")


# --- Speaker extraction ---

@pytest.mark.parametrize("paragraph,speaker", [
    ('Mary said, "We should leave."', "Mary"),
    ('"We should leave," said Mary.', "Mary"),
    ('"Fine," Tom replied.', "Tom"),
    ('"Fine," he replied.', None),
    ('I said, "Stop."', None),
    ('"Wait," the guard shouted.', "guard"),
    ('"Go," Emily whispered.', "Emily"),
    ('"Go," she softly whispered.', None),
])
def test_extract_speaker(paragraph, speaker):
    assert extract_speaker(paragraph) == speaker


def test_verb_inside_quotes_ignored():
    """A speech verb inside the quote is not attribution."""
    assert extract_speaker('"He said no," Anna replied.') == "Anna"


def test_extract_speaker_never_raises_on_odd_input():
    assert extract_speaker('"" said') is None
    assert extract_speaker("said") is None


# --- Segmentation ---

def test_every_paragraph_yields_one_unit():
    chapters = [Chapter(number=1, title="One", text='A.\n\n"Hi," said Bo.\n\nC.')]
    units = segment_chapters(chapters)
    assert [u.kind for u in units] == ["narrative", "dialogue", "narrative"]
    assert units[1].speaker == "Bo"
    assert units[0].speaker is None


def test_sequence_numbers_dense_across_chapters():
    chapters = [
        Chapter(number=1, title="One", text="A.\n\nB."),
        Chapter(number=2, title="Two", text="C.\n\n\n\nD.\n\nE."),
    ]
    units = segment_chapters(chapters, start=10)
    assert [u.sequence for u in units] == [10, 11, 12, 13, 14]
    assert [u.chapter for u in units] == [1, 1, 2, 2, 2]


def test_empty_chapters_yield_nothing():
    assert segment_chapters([Chapter(number=1, title="Blank", text="  \n\n ")]) == []


def test_emotion_hook_applied():
    joy = Emotion(kind="joy", intensity=0.8)
    units = segment_chapters(
        [Chapter(number=1, title="One", text="Yay!\n\nHm.")],
        classify_emotion=lambda text: joy if "!" in text else None,
    )
    assert units[0].emotion == joy
    assert units[1].emotion is None


def test_emotion_hook_errors_propagate():
    def broken(text):
        raise RuntimeError("classifier bug")

    with pytest.raises(RuntimeError):
        segment_chapters([Chapter(number=1, title="One", text="Text.")], classify_emotion=broken)


# --- Chapter splitting ---

def test_split_manuscript_on_headings():
    text = (
        "The Book\n\nby Some Author\n\n"
        "Chapter 1\n\nIt began.\n\n"
        "CHAPTER TWO: The Middle\n\nIt went on.\n\n"
        "Chapter III\n\nIt ended."
    )
    chapters = split_manuscript(text)
    assert [c.title for c in chapters] == ["Chapter 1", "CHAPTER TWO: The Middle", "Chapter III"]
    assert [c.number for c in chapters] == [1, 2, 3]
    assert chapters[1].text == "It went on."


def test_split_manuscript_preamble_becomes_opening():
    text = "A short foreword.\n\nChapter 1\n\nBody."
    chapters = split_manuscript(text)
    assert chapters[0].title == "Opening"
    assert chapters[0].text == "A short foreword."
    assert chapters[1].title == "Chapter 1"


def test_split_manuscript_without_headings():
    text = "The Book\n\nby Some Author\n\nOnly text here.\n\nMore text."
    chapters = split_manuscript(text)
    assert len(chapters) == 1
    assert chapters[0].title == "The Book"
    assert "The Book" not in chapters[0].text
    assert chapters[0].text.startswith("Only text here.")


def test_split_manuscript_empty():
    assert split_manuscript("   ") == []


def test_heading_word_inside_sentence_not_split():
    text = "This chapter 1 mention is prose.\n\nMore."
    assert len(split_manuscript(text)) == 1
