"""Synthesis provider interface and the edge-tts backed provider."""

import asyncio
import io
import logging
import re
from abc import ABC, abstractmethod

import edge_tts
from pydub import AudioSegment

from audiobook_ensemble.constants import (
    CLONE_TIMEOUT_SECONDS,
    DEFAULT_AGE_BRACKET,
    EDGE_COST_PER_1K,
    TTS_RATE,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
    TTS_TIMEOUT_SECONDS,
    WORDS_PER_MINUTE,
)
from audiobook_ensemble.errors import ProviderError
from audiobook_ensemble.models import Emotion, SynthesizedAudio, VoiceProfile, VoiceSettings

logger = logging.getLogger(__name__)

# failure kinds worth another attempt against the same provider; a timed-out
# request has already spent the whole per-call budget
TRANSIENT_FAILURES = {"transport", "server", "empty"}


class SynthesisProvider(ABC):
    """One speech-synthesis backend.

    Instances are built once per process and shared by concurrent calls;
    nothing but the lazily filled voice catalog changes after construction.
    """

    name = ""
    cost_per_1k = 0.0
    timeout_seconds = TTS_TIMEOUT_SECONDS
    clone_timeout_seconds = CLONE_TIMEOUT_SECONDS

    def __init__(self):
        self._voices: list[VoiceProfile] | None = None

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice_id: str,
        settings: VoiceSettings | None = None,
        emotion: Emotion | None = None,
    ) -> SynthesizedAudio:
        """Render text with one voice. Raises ProviderError on any failure."""

    @abstractmethod
    async def fetch_voices(self) -> list[VoiceProfile]:
        """Query the backend's voice catalog."""

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the backend answers. Never raises."""

    async def list_voices(self) -> list[VoiceProfile]:
        """Voice catalog, fetched once and cached for the process lifetime."""
        if self._voices is None:
            self._voices = await self.fetch_voices()
            logger.info("Retrieved %d voices from %s", len(self._voices), self.name)
        return list(self._voices)


def estimate_duration(text: str) -> float:
    """Seconds of speech for text at an average narration pace."""
    words = len(text.split())
    return words / WORDS_PER_MINUTE * 60


def cost_for(text: str, cost_per_1k: float) -> float:
    return len(text) / 1000 * cost_per_1k


def measure_duration(audio: bytes, fmt: str, provider: str) -> float:
    """Decode provider audio and return its length in seconds."""
    try:
        segment = AudioSegment.from_file(io.BytesIO(audio), format=fmt)
    except Exception as e:
        raise ProviderError(
            f"{provider} returned audio that could not be decoded as {fmt}",
            provider=provider,
            failure_kind="malformed",
        ) from e
    return len(segment) / 1000


def age_bracket_from_label(label: str | None) -> str:
    """Map a catalog age label ("young", "middle aged", "old") to a bracket."""
    words = set(re.findall(r"[a-z]+", (label or "").lower()))
    if words & {"child", "kid", "children"}:
        return "0-12"
    if words & {"teen", "teenager", "youth", "adolescent"}:
        return "13-19"
    if words & {"middle", "mature"}:
        return "36-55"
    if words & {"old", "senior", "elderly", "elder"}:
        return "56+"
    return DEFAULT_AGE_BRACKET


def gender_from_label(label: str | None) -> str:
    gender = (label or "").lower()
    return gender if gender in ("male", "female") else "neutral"


async def with_retries(attempt, provider: str):
    """Await attempt() with exponential backoff on transient ProviderErrors.

    Permanent failures (4xx, malformed payloads) are raised straight away so
    the orchestrator can move on to the fallback provider.
    """
    last_error = None
    for n in range(TTS_RETRY_COUNT):
        try:
            return await attempt()
        except ProviderError as e:
            if e.failure_kind not in TRANSIENT_FAILURES:
                raise
            last_error = e
            logger.debug("%s attempt %d/%d failed: %s", provider, n + 1, TTS_RETRY_COUNT, e)

        if n < TTS_RETRY_COUNT - 1:
            await asyncio.sleep(TTS_RETRY_BASE_DELAY * (2 ** n))

    raise last_error


# Edge has no style controls; emotions nudge the speaking rate instead
_EMOTION_RATES = {
    "joy": "+0%",
    "surprise": "+5%",
    "anger": "+5%",
    "fear": "-5%",
    "sadness": "-20%",
}

_LOCALE_ACCENTS = {
    "en-US": "american",
    "en-GB": "british",
    "en-AU": "australian",
    "en-CA": "canadian",
    "en-IN": "indian",
    "en-IE": "irish",
    "en-NZ": "new zealand",
    "en-ZA": "south african",
}


class EdgeTTSProvider(SynthesisProvider):
    """Microsoft Edge neural voices through edge-tts. Free, MP3 output."""

    name = "edge"

    def __init__(self, rate: str = TTS_RATE, locale_prefix: str = "en",
                 cost_per_1k: float = EDGE_COST_PER_1K):
        super().__init__()
        self.rate = rate
        self.locale_prefix = locale_prefix
        self.cost_per_1k = cost_per_1k

    def _rate_for(self, emotion: Emotion | None) -> str:
        if emotion is None:
            return self.rate
        return _EMOTION_RATES.get(emotion.kind, self.rate)

    async def _stream_audio(self, text: str, voice_id: str, rate: str) -> bytes:
        audio = bytearray()
        try:
            communicate = edge_tts.Communicate(text, voice_id, rate=rate)
            async for chunk in communicate.stream():
                if chunk["type"] == "audio":
                    audio.extend(chunk["data"])
        except Exception as e:
            raise ProviderError(
                f"edge-tts request failed: {e}", provider=self.name, failure_kind="transport",
            ) from e

        # 0-byte output counts as failure
        if not audio:
            raise ProviderError(
                f"edge-tts produced no audio for: {text[:50]}...",
                provider=self.name,
                failure_kind="empty",
            )
        return bytes(audio)

    async def synthesize(self, text, voice_id, settings=None, emotion=None):
        rate = self._rate_for(emotion)
        audio = await with_retries(lambda: self._stream_audio(text, voice_id, rate), self.name)
        duration = await asyncio.to_thread(measure_duration, audio, "mp3", self.name)
        return SynthesizedAudio(
            audio=audio,
            format="mp3",
            duration_seconds=duration,
            cost=cost_for(text, self.cost_per_1k),
        )

    async def fetch_voices(self):
        try:
            raw = await edge_tts.list_voices()
        except Exception as e:
            raise ProviderError(
                "Failed to fetch the edge-tts voice list", provider=self.name,
                failure_kind="transport",
            ) from e
        return [
            self._to_profile(v) for v in raw
            if v.get("Locale", "").startswith(self.locale_prefix)
        ]

    def _to_profile(self, voice: dict) -> VoiceProfile:
        locale = voice.get("Locale", "")
        personalities = voice.get("VoiceTag", {}).get("VoicePersonalities", [])
        return VoiceProfile(
            id=voice["ShortName"],
            name=voice.get("FriendlyName", voice["ShortName"]),
            provider=self.name,
            gender=gender_from_label(voice.get("Gender")),
            age_bracket=age_bracket_from_label(" ".join(personalities)),
            accent=_LOCALE_ACCENTS.get(locale, locale.lower() or "neutral"),
            descriptors=tuple(p.lower() for p in personalities),
        )

    async def health_check(self):
        try:
            await edge_tts.list_voices()
            return True
        except Exception as e:
            logger.error("edge-tts health check failed: %s", e)
            return False
