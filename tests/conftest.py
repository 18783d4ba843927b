"""Shared fixtures for audiobook ensemble tests."""

import asyncio
import io

import numpy as np
import pytest
from pydub import AudioSegment

from audiobook_ensemble.audio_engine import AudioEngine
from audiobook_ensemble.constants import NARRATOR
from audiobook_ensemble.errors import ProviderError
from audiobook_ensemble.models import (
    NarrationUnit,
    SynthesizedAudio,
    VoiceAssignment,
    VoiceProfile,
    VoiceSettings,
)
from audiobook_ensemble.tts import SynthesisProvider


def make_tone(duration_ms=200, freq=220.0, sample_rate=22050) -> AudioSegment:
    """Sine tone as a mono 16-bit AudioSegment."""
    duration = duration_ms / 1000
    t = np.linspace(0, duration, int(sample_rate * duration), endpoint=False)
    samples = (np.sin(2 * np.pi * freq * t) * 0.5 * 32767).astype(np.int16)
    return AudioSegment(
        samples.tobytes(), frame_rate=sample_rate, sample_width=2, channels=1,
    )


def wav_bytes(segment: AudioSegment) -> bytes:
    buffer = io.BytesIO()
    segment.export(buffer, format="wav")
    return buffer.getvalue()


class FakeProvider(SynthesisProvider):
    """In-memory provider. ``fail`` is a set of unit texts it refuses."""

    def __init__(self, name="primary", fail=(), delay=0.0, voices=(), healthy=True,
                 timeout=5.0):
        super().__init__()
        self.name = name
        self.fail = set(fail)
        self.delay = delay
        self.voices = list(voices)
        self.healthy = healthy
        self.timeout_seconds = timeout
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def synthesize(self, text, voice_id, settings=None, emotion=None):
        self.calls.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if text in self.fail or "*" in self.fail:
                raise ProviderError(
                    f"{self.name} refused '{text}'", provider=self.name, failure_kind="server",
                )
            return SynthesizedAudio(
                audio=f"{self.name}:{text}".encode(),
                format="wav",
                duration_seconds=float(len(text)),
                cost=len(text) / 1000,
            )
        finally:
            self.active -= 1

    async def fetch_voices(self):
        return list(self.voices)

    async def health_check(self):
        return self.healthy


class FakeEngine(AudioEngine):
    """Records calls; byte payloads pass through so order is observable."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.calls = []

    def _check(self, op):
        self.calls.append(op)
        if op == self.fail_on:
            raise RuntimeError(f"{op} exploded")

    def normalize(self, audio, fmt, target_lufs):
        self._check("normalize")
        return b"[" + audio + b"]"

    def concatenate(self, chunks, fmt):
        self._check("concatenate")
        return b"".join(chunks)

    def encode(self, audio, fmt, target_format, bitrate, sample_rate,
               metadata=None, chapters=None):
        self._check("encode")
        return target_format.encode() + b":" + audio


@pytest.fixture
def voice_pool():
    return [
        VoiceProfile(id="v-narr", name="Roger", provider="primary", gender="male",
                     age_bracket="36-55", accent="american", descriptors=("deep", "calm")),
        VoiceProfile(id="v-anna", name="Anna", provider="primary", gender="female",
                     age_bracket="20-35", accent="british", descriptors=("warm", "gentle")),
        VoiceProfile(id="v-kid", name="Pip", provider="primary", gender="neutral",
                     age_bracket="0-12", accent="neutral", descriptors=("playful",)),
        VoiceProfile(id="v-old", name="Walter", provider="primary", gender="male",
                     age_bracket="56+", accent="british", descriptors=("gravelly", "wise")),
    ]


@pytest.fixture
def settings():
    return VoiceSettings(stability=0.65, similarity_boost=0.75, style=0.5)


@pytest.fixture
def assignments(voice_pool, settings):
    return [
        VoiceAssignment(character=NARRATOR, voice=voice_pool[0], settings=settings, score=0.5),
        VoiceAssignment(character="Alice", voice=voice_pool[1], settings=settings, score=1.0),
    ]


@pytest.fixture
def sample_units():
    return [
        NarrationUnit(sequence=1, kind="narrative", text="It was dark."),
        NarrationUnit(sequence=2, kind="dialogue", text='"Hello," said Alice.', speaker="Alice"),
        NarrationUnit(sequence=3, kind="narrative", text="The wind rose."),
        NarrationUnit(sequence=4, kind="dialogue", text='"Who?" asked Alice.', speaker="alice"),
        NarrationUnit(sequence=5, kind="narrative", text="Silence."),
    ]


@pytest.fixture
def tone_wav():
    return wav_bytes(make_tone())
