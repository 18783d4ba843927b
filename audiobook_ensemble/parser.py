"""Split manuscript text into narration units with speaker attribution."""

import logging
import re
from collections.abc import Callable

from audiobook_ensemble.models import Chapter, Emotion, NarrationUnit

logger = logging.getLogger(__name__)

# Speech verbs for attribution detection
SPEECH_VERBS = (
    "said", "asked", "replied", "cried", "whispered", "exclaimed",
    "shouted", "murmured", "muttered", "screamed", "shrieked",
    "called", "answered", "demanded", "insisted", "suggested",
    "pleaded", "begged", "groaned", "moaned", "sighed", "gasped",
    "laughed", "sobbed", "hissed", "snapped", "growled",
    "roared", "yelled", "bellowed", "announced", "declared",
    "remarked", "observed", "commented", "added",
    "continued", "admitted", "confessed",
    "agreed", "conceded", "protested", "objected",
    "interrupted", "interjected", "urged", "warned", "cautioned",
    "promised", "vowed", "swore", "stammered", "stuttered",
    "blurted", "says", "asks", "replies", "whispers", "shouts",
)

_VERB_PATTERN = "|".join(re.escape(v) for v in SPEECH_VERBS)
_VERB_RE = re.compile(rf"\b(?:{_VERB_PATTERN})\b", re.IGNORECASE)

# Straight or curly double quotes around at least one character
_QUOTE_RE = re.compile(r'"[^"\n]+"|“[^”]+”')

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")

# "John said": word directly before the verb
_NAME_BEFORE_RE = re.compile(r"([A-Za-z][\w'\-]*)\s+$")
# "said John": capitalised word directly after the verb
_NAME_AFTER_RE = re.compile(r"^\s+([A-Z][\w'\-]*)")

# Tokens that sit where a name would but never are one
_NOT_A_NAME = {
    "i", "we", "you", "he", "she", "they", "it", "him", "her", "them", "us",
    "the", "a", "an", "and", "but", "then", "who", "which", "that", "as",
    "also", "again",
}

_NUMBER_WORDS = "|".join((
    "one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "ten",
    "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen", "seventeen",
    "eighteen", "nineteen", "twenty",
))
_CHAPTER_HEADING_RE = re.compile(
    rf"^[ \t]*(chapter[ \t]+(?:\d+|[ivxlcdm]+|{_NUMBER_WORDS})\b[^\n]*)$",
    re.IGNORECASE | re.MULTILINE,
)

EmotionClassifier = Callable[[str], Emotion | None]


def extract_metadata(text: str) -> tuple[str, str]:
    """Extract title and author from the text file header.

    Convention: first non-empty line = title, line matching ^by .+ = author.
    Falls back to ("Untitled", "Unknown Author").
    """
    lines = text.strip().split("\n")
    title = "Untitled"
    author = "Unknown Author"

    # Only treat first line as title if we also find a "by Author" line
    has_by_line = False
    for line in lines:
        match = re.match(r"^by\s+(.+)$", line.strip(), re.IGNORECASE)
        if match:
            author = match.group(1).strip()
            has_by_line = True
            break

    if has_by_line:
        non_empty = [line.strip() for line in lines if line.strip()]
        if non_empty:
            title = non_empty[0]

    return title, author


def _strip_metadata_header(text: str) -> str:
    """Remove title and author lines from the beginning of the text."""
    paragraphs = _PARAGRAPH_SPLIT_RE.split(text.strip())
    title, _ = extract_metadata(text)
    if title == "Untitled":
        return text.strip()

    start_idx = 0
    for i, para in enumerate(paragraphs):
        stripped = para.strip()
        if not stripped:
            continue
        if stripped == title or re.match(r"^by\s+", stripped, re.IGNORECASE):
            start_idx = i + 1
            continue
        # "Title\nby Author" in one paragraph
        lines = [line.strip() for line in stripped.split("\n")]
        if len(lines) == 2 and lines[0] == title and re.match(r"^by\s+", lines[1], re.IGNORECASE):
            start_idx = i + 1
            continue
        break
    return "\n\n".join(paragraphs[start_idx:])


def split_manuscript(text: str) -> list[Chapter]:
    """Split a plain-text manuscript into chapters on "Chapter N" headings.

    Text before the first heading becomes an "Opening" chapter when it holds
    anything besides the title/author header. A manuscript without headings
    is one chapter named after the book.
    """
    body = _strip_metadata_header(text)
    headings = list(_CHAPTER_HEADING_RE.finditer(body))

    if not headings:
        title, _ = extract_metadata(text)
        return [Chapter(number=1, title=title, text=body)] if body.strip() else []

    sections = []
    preamble = body[:headings[0].start()]
    if preamble.strip():
        sections.append(("Opening", preamble))
    for i, heading in enumerate(headings):
        end = headings[i + 1].start() if i + 1 < len(headings) else len(body)
        sections.append((heading.group(1).strip(), body[heading.end():end]))

    return [
        Chapter(number=n, title=title, text=content.strip())
        for n, (title, content) in enumerate(sections, start=1)
    ]


def split_paragraphs(text: str) -> list[str]:
    """Blank-line separated paragraphs, whitespace-only candidates dropped."""
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if p.strip()]


def is_dialogue(paragraph: str) -> bool:
    """Quoted span plus a speech verb. A heuristic, not a parser."""
    return bool(_QUOTE_RE.search(paragraph)) and bool(_VERB_RE.search(paragraph))


def _mask_quotes(paragraph: str) -> str:
    """Blank out quoted speech so verbs inside it don't count as attribution."""
    return _QUOTE_RE.sub(lambda m: '"' + " " * (len(m.group(0)) - 2) + '"', paragraph)


def _clean_name(token: str) -> str | None:
    name = token.strip().strip("'-")
    if not name or name.lower() in _NOT_A_NAME:
        return None
    # lower-case "-ly" words are adverbs ("gently said"), capitalised ones may be names
    if name[0].islower() and name.endswith("ly"):
        return None
    return name


def extract_speaker(paragraph: str) -> str | None:
    """Name the speaker of a dialogue paragraph, or None when unsure.

    Takes the word directly before the first attribution verb outside the
    quotes ("Mary said"); when punctuation sits there instead ("...," said
    Mary) the capitalised word after the verb is used. Pronouns, articles
    and adverbs are rejected so the unit falls back to the narrator.
    """
    masked = _mask_quotes(paragraph)
    source = masked if _VERB_RE.search(masked) else paragraph
    match = _VERB_RE.search(source)
    if match is None:
        return None

    before = _NAME_BEFORE_RE.search(source[:match.start()])
    if before:
        return _clean_name(before.group(1))

    after = _NAME_AFTER_RE.match(source[match.end():])
    if after:
        return _clean_name(after.group(1))
    return None


def segment_chapters(
    chapters: list[Chapter],
    start: int = 1,
    classify_emotion: EmotionClassifier | None = None,
) -> list[NarrationUnit]:
    """Turn ordered chapters into narration units, one per paragraph.

    Sequence numbers run densely across the whole book from ``start`` so
    final audio order survives concurrent synthesis. ``classify_emotion``
    is the hook for an upstream emotion classifier.
    """
    units = []
    sequence = start

    for chapter in chapters:
        for paragraph in split_paragraphs(chapter.text):
            dialogue = is_dialogue(paragraph)
            units.append(NarrationUnit(
                sequence=sequence,
                kind="dialogue" if dialogue else "narrative",
                text=paragraph,
                speaker=extract_speaker(paragraph) if dialogue else None,
                emotion=classify_emotion(paragraph) if classify_emotion else None,
                chapter=chapter.number,
            ))
            sequence += 1

    dialogue_count = sum(1 for u in units if u.kind == "dialogue")
    logger.info(
        "Segmented %d chapters into %d units (%d dialogue)",
        len(chapters), len(units), dialogue_count,
    )
    return units
