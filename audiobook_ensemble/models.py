"""Data models for audiobook generation."""

from dataclasses import dataclass, field

UNIT_KINDS = ("narrative", "dialogue")
GENDERS = ("male", "female", "neutral")
EMOTIONAL_RANGES = ("low", "medium", "high")
EMOTION_KINDS = ("joy", "fear", "anger", "sadness", "neutral", "surprise", "disgust")


@dataclass(frozen=True)
class Chapter:
    number: int
    title: str
    text: str


@dataclass(frozen=True)
class Emotion:
    kind: str          # one of EMOTION_KINDS
    intensity: float   # 0.0–1.0


@dataclass(frozen=True)
class NarrationUnit:
    sequence: int               # final audio order, dense across the whole book
    kind: str                   # "narrative" or "dialogue"
    text: str
    speaker: str | None = None  # None → narrator voice
    emotion: Emotion | None = None
    chapter: int = 1


@dataclass(frozen=True)
class VoiceProfile:
    id: str
    name: str
    provider: str
    gender: str                 # one of GENDERS
    age_bracket: str            # one of constants.AGE_BRACKETS
    accent: str = "neutral"
    descriptors: tuple[str, ...] = ()
    cloned_from: str | None = None   # source sample / voice for cloned voices
    sample_url: str | None = None


@dataclass(frozen=True)
class CharacterProfile:
    name: str
    age: int
    gender: str
    tone: tuple[str, ...] = ()
    emotional_range: str = "medium"  # one of EMOTIONAL_RANGES
    accent: str | None = None


@dataclass(frozen=True)
class VoiceSettings:
    stability: float
    similarity_boost: float
    style: float
    use_speaker_boost: bool = True

    def as_dict(self) -> dict:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


@dataclass(frozen=True)
class VoiceAssignment:
    character: str              # character name or constants.NARRATOR
    voice: VoiceProfile
    settings: VoiceSettings
    score: float


@dataclass(frozen=True)
class SynthesizedAudio:
    """Raw output of one provider call."""
    audio: bytes
    format: str
    duration_seconds: float
    cost: float


@dataclass(frozen=True)
class SynthesizedFragment:
    sequence: int
    audio: bytes
    format: str
    duration_seconds: float
    cost: float
    provider: str


@dataclass(frozen=True)
class ChapterMarker:
    number: int
    title: str
    start_seconds: float
    duration_seconds: float


@dataclass(frozen=True)
class AudiobookMetadata:
    title: str
    author: str
    narrator: str = ""
    language: str = "en"
    subtitle: str | None = None
    series: str | None = None
    series_number: int | None = None
    publisher: str = ""
    publication_date: str = ""   # ISO date
    isbn: str | None = None


@dataclass(frozen=True)
class AssembledAudiobook:
    outputs: dict[str, bytes]    # encoded stream per format
    total_duration: float
    total_cost: float
    chapters: tuple[ChapterMarker, ...]
    metadata: AudiobookMetadata


@dataclass
class ProgressEvent:
    stage: str
    percent_complete: int
    message: str
    current_chapter: int | None = None
    total_chapters: int | None = None
    current_segment: int | None = None
    total_segments: int | None = None
    extra: dict = field(default_factory=dict)
