"""Character-to-voice matching, settings tuning and cast file loading."""

import json
import logging
import os
from dataclasses import dataclass, field

from audiobook_ensemble.constants import (
    AGE_BRACKETS,
    DEFAULT_FALLBACK_ACCENT,
    DEFAULT_SIMILARITY_BOOST,
    DEFAULT_STABILITY,
    DEFAULT_STYLE,
    NARRATOR,
    NEUTRAL_SCORE,
)
from audiobook_ensemble.errors import NoSuitableVoiceError, ValidationError
from audiobook_ensemble.models import (
    CharacterProfile,
    VoiceAssignment,
    VoiceProfile,
    VoiceSettings,
)

logger = logging.getLogger(__name__)

# (stability, style) per emotional range
_RANGE_SETTINGS = {
    "low": (0.8, 0.3),
    "medium": (0.65, 0.5),
    "high": (0.5, 0.8),
}
_CALM_TONES = {"calm", "serene", "gentle"}
_ENERGETIC_TONES = {"energetic", "dynamic", "lively"}


def age_bracket_for(age: int) -> str:
    """Map a numeric age onto one of the five ordered brackets."""
    if age <= 12:
        return "0-12"
    if age <= 19:
        return "13-19"
    if age <= 35:
        return "20-35"
    if age <= 55:
        return "36-55"
    return "56+"


def brackets_adjacent(a: str, b: str) -> bool:
    return abs(AGE_BRACKETS.index(a) - AGE_BRACKETS.index(b)) == 1


def filter_by_gender(voices: list[VoiceProfile], gender: str) -> list[VoiceProfile]:
    return [v for v in voices if v.gender == gender or v.gender == "neutral"]


def filter_by_age(voices: list[VoiceProfile], age: int) -> list[VoiceProfile]:
    target = age_bracket_for(age)
    return [
        v for v in voices
        if v.age_bracket == target or brackets_adjacent(v.age_bracket, target)
    ]


def filter_by_accent(voices: list[VoiceProfile], accent: str) -> list[VoiceProfile]:
    wanted = accent.lower()
    return [
        v for v in voices
        if v.accent.lower() in (wanted, "neutral", DEFAULT_FALLBACK_ACCENT)
    ]


def personality_score(descriptors, tone) -> float:
    """Substring overlap between voice descriptors and character tone tags.

    Either list empty → neutral 0.5, so voices without metadata stay in the
    running.
    """
    if not descriptors or not tone:
        return NEUTRAL_SCORE

    tones = [t.lower() for t in tone]
    descs = [d.lower() for d in descriptors]
    matches = sum(1 for t in tones for d in descs if d in t or t in d)
    score = matches / max(len(tones), len(descs))
    return max(0.0, min(1.0, score))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def optimize_settings(character: CharacterProfile) -> VoiceSettings:
    """Derive synthesis settings from emotional range, then tone keywords."""
    stability, style = _RANGE_SETTINGS.get(
        character.emotional_range, (DEFAULT_STABILITY, DEFAULT_STYLE)
    )
    tones = {t.lower() for t in character.tone}

    if tones & _CALM_TONES:
        stability = min(0.85, stability + 0.1)
    if tones & _ENERGETIC_TONES:
        stability = max(0.4, stability - 0.15)
        style = 0.8

    return VoiceSettings(
        stability=_clamp(stability),
        similarity_boost=_clamp(DEFAULT_SIMILARITY_BOOST),
        style=_clamp(style),
        use_speaker_boost=True,
    )


def match_character(
    character: CharacterProfile,
    pool: list[VoiceProfile],
) -> VoiceAssignment:
    """Pick the best voice for one character.

    Stages run in order and each only sees the survivors of the one before:
    gender → age → accent (when requested) → tone score. Ties go to the
    voice listed first in the pool. Raises NoSuitableVoiceError when a
    filter leaves nothing.
    """
    logger.debug("Matching %s against %d voices", character.name, len(pool))

    candidates = filter_by_gender(pool, character.gender)
    if not candidates:
        raise NoSuitableVoiceError(character.name, "gender")

    candidates = filter_by_age(candidates, character.age)
    if not candidates:
        raise NoSuitableVoiceError(character.name, "age")

    if character.accent:
        candidates = filter_by_accent(candidates, character.accent)
        if not candidates:
            raise NoSuitableVoiceError(character.name, "accent")

    best, best_score = None, -1.0
    for voice in candidates:
        score = personality_score(voice.descriptors, character.tone)
        if score > best_score:  # strict: first occurrence wins ties
            best, best_score = voice, score

    logger.info(
        "Matched %s → %s (%s, score %.2f)",
        character.name, best.name, best.provider, best_score,
    )
    return VoiceAssignment(
        character=character.name,
        voice=best,
        settings=optimize_settings(character),
        score=best_score,
    )


def batch_match(
    characters: list[CharacterProfile],
    pool: list[VoiceProfile],
) -> tuple[list[VoiceAssignment], dict[str, ValidationError]]:
    """Match every character independently.

    Returns (successful assignments, failures keyed by character name). One
    unmatched character never stops the rest of the cast.
    """
    logger.info("Batch matching %d characters against %d voices", len(characters), len(pool))
    matches = []
    failures = {}
    for character in characters:
        try:
            matches.append(match_character(character, pool))
        except ValidationError as e:
            logger.error("Failed to match character %s: %s", character.name, e)
            failures[character.name] = e
    return matches, failures


def filter_voices(
    pool: list[VoiceProfile],
    gender: str | None = None,
    age_bracket: str | None = None,
    accent: str | None = None,
    provider: str | None = None,
) -> list[VoiceProfile]:
    """Exact-field catalog search, any criterion may be omitted."""
    result = pool
    if gender:
        result = [v for v in result if v.gender == gender.lower()]
    if age_bracket:
        result = [v for v in result if v.age_bracket == age_bracket]
    if accent:
        result = [v for v in result if v.accent.lower() == accent.lower()]
    if provider:
        result = [v for v in result if v.provider == provider.lower()]
    return result


def assign_narrator(
    pool: list[VoiceProfile],
    voice_id: str | None = None,
    profile: CharacterProfile | None = None,
) -> VoiceAssignment:
    """Build the sentinel narrator assignment.

    An explicit voice id wins; otherwise the narrator profile is matched like
    any character. With neither, the first voice in the pool narrates.
    """
    settings_source = profile or CharacterProfile(name=NARRATOR, age=40, gender="neutral")

    if voice_id:
        for voice in pool:
            if voice.id == voice_id:
                return VoiceAssignment(
                    character=NARRATOR,
                    voice=voice,
                    settings=optimize_settings(settings_source),
                    score=1.0,
                )
        raise ValidationError(
            f"Narrator voice '{voice_id}' is not in the voice catalog",
            stage="matching",
            hint="Run the 'voices' command to list available voice ids.",
        )

    if profile is not None:
        match = match_character(profile, pool)
        return VoiceAssignment(
            character=NARRATOR, voice=match.voice, settings=match.settings, score=match.score,
        )

    if not pool:
        raise NoSuitableVoiceError(NARRATOR, "catalog")
    return VoiceAssignment(
        character=NARRATOR,
        voice=pool[0],
        settings=optimize_settings(settings_source),
        score=NEUTRAL_SCORE,
    )


def build_assignment_map(
    assignments: list[VoiceAssignment],
    aliases: dict[str, str] | None = None,
) -> dict[str, VoiceAssignment]:
    """Key assignments by lower-cased name, aliases pointing at their character."""
    by_name = {a.character.lower(): a for a in assignments}
    for alias, primary in (aliases or {}).items():
        if primary.lower() in by_name:
            by_name.setdefault(alias.lower(), by_name[primary.lower()])
    return by_name


@dataclass
class Cast:
    narrator_voice: str | None = None
    narrator: CharacterProfile | None = None
    characters: list[CharacterProfile] = field(default_factory=list)
    aliases: dict[str, str] = field(default_factory=dict)  # alias → character name


def _as_tags(value) -> tuple[str, ...]:
    # a lone string is one tag, not a sequence of letters
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _require_object(value, what: str) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def _profile_from_entry(name: str, info: dict) -> CharacterProfile:
    info = _require_object(info, f"entry for {name!r}")
    try:
        age = int(info.get("age", 30))
    except (TypeError, ValueError):
        raise ValueError(f"age for {name!r} must be a number, got {info.get('age')!r}") from None
    return CharacterProfile(
        name=name,
        age=age,
        gender=str(info.get("gender", "neutral")).lower(),
        tone=_as_tags(info.get("tone", ())),
        emotional_range=info.get("emotional_range", "medium"),
        accent=info.get("accent"),
    )


def parse_cast(data: dict) -> Cast:
    """Build a Cast from the decoded JSON of a cast file.

    Raises ValueError or TypeError when a field has the wrong shape.
    """
    data = _require_object(data, "cast file")
    cast = Cast()
    narrator_info = _require_object(data.get("narrator", {}), "narrator")
    cast.narrator_voice = narrator_info.get("voice")
    if any(k in narrator_info for k in ("age", "gender", "tone")):
        cast.narrator = _profile_from_entry(NARRATOR, narrator_info)

    for name, info in _require_object(data.get("cast", {}), "cast").items():
        cast.characters.append(_profile_from_entry(name, info))
        for alias in _as_tags(info.get("aliases", ())):
            cast.aliases[alias] = name
    return cast


def load_cast(story_path: str) -> Cast:
    """Load the .cast.json sidecar next to a manuscript, if it exists.

    A missing file or one that is not JSON yields an empty Cast. JSON with
    the wrong shape (a list at the top, a non-numeric age) is a
    ValidationError naming the file.
    """
    base = os.path.splitext(story_path)[0]
    cast_path = base + ".cast.json"
    if not os.path.exists(cast_path):
        return Cast()
    try:
        with open(cast_path) as f:
            data = json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed cast file: %s, using an empty cast", cast_path)
        return Cast()
    try:
        return parse_cast(data)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Invalid cast file {cast_path}: {e}",
            stage="matching",
            hint="Each cast entry needs a numeric age; tone and aliases are lists of strings.",
        ) from e
