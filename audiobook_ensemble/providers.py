"""REST synthesis providers: ElevenLabs, PlayHT and a self-hosted XTTS server.

Each provider owns one long-lived ``requests.Session`` that concurrent
synthesis calls share. Blocking HTTP work runs on worker threads so the
orchestrator's event loop keeps dispatching the rest of a batch.
"""

import asyncio
import logging

import requests

from audiobook_ensemble.config import Settings
from audiobook_ensemble.constants import (
    DEFAULT_SIMILARITY_BOOST,
    DEFAULT_STABILITY,
    DEFAULT_STYLE,
    PLAYHT_POLL_ATTEMPTS,
    PLAYHT_POLL_INTERVAL,
)
from audiobook_ensemble.errors import ProviderError, ValidationError
from audiobook_ensemble.models import Emotion, SynthesizedAudio, VoiceProfile, VoiceSettings
from audiobook_ensemble.tts import (
    EdgeTTSProvider,
    SynthesisProvider,
    age_bracket_from_label,
    cost_for,
    gender_from_label,
    measure_duration,
    with_retries,
)

logger = logging.getLogger(__name__)

_MAX_ERROR_CHARS = 180


def default_settings() -> VoiceSettings:
    return VoiceSettings(
        stability=DEFAULT_STABILITY,
        similarity_boost=DEFAULT_SIMILARITY_BOOST,
        style=DEFAULT_STYLE,
        use_speaker_boost=True,
    )


def apply_emotion(settings: VoiceSettings, emotion: Emotion | None) -> VoiceSettings:
    """Shift voice settings toward an emotion, scaled by its intensity."""
    if emotion is None:
        return settings

    stability = settings.stability
    similarity = settings.similarity_boost
    style = settings.style
    boost = settings.use_speaker_boost

    if emotion.kind == "joy":
        stability = max(0.4, stability - 0.1)
        style = 0.7
    elif emotion.kind == "fear":
        stability = min(0.9, stability + 0.2)
        similarity = min(1.0, similarity + 0.1)
    elif emotion.kind == "anger":
        stability = max(0.3, stability - 0.2)
        style = 0.9
        boost = True
    elif emotion.kind == "sadness":
        stability = min(0.85, stability + 0.15)
        style = 0.3
    elif emotion.kind == "surprise":
        stability = max(0.35, stability - 0.15)
        style = 0.8
    elif emotion.kind == "disgust":
        stability = 0.6
        style = 0.6

    style *= emotion.intensity or 0.5
    return VoiceSettings(
        stability=max(0.0, min(1.0, stability)),
        similarity_boost=max(0.0, min(1.0, similarity)),
        style=max(0.0, min(1.0, style)),
        use_speaker_boost=boost,
    )


class HTTPProvider(SynthesisProvider):
    """Shared session handling and HTTP → ProviderError mapping."""

    def __init__(self, base_url: str, headers: dict, cost_per_1k: float,
                 timeout: float | None = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.cost_per_1k = cost_per_1k
        if timeout is not None:
            self.timeout_seconds = timeout
        self.session = requests.Session()
        self.session.headers.update(headers)

    def _request(self, method: str, path: str, timeout: float | None = None,
                 **kwargs) -> requests.Response:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, timeout=timeout or self.timeout_seconds, **kwargs
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            raise self._http_error(e) from e
        except requests.Timeout as e:
            raise ProviderError(
                f"{self.name} request timed out", provider=self.name, failure_kind="timeout",
            ) from e
        except requests.RequestException as e:
            raise ProviderError(
                f"{self.name} transport error: {str(e)[:_MAX_ERROR_CHARS]}",
                provider=self.name,
                failure_kind="transport",
            ) from e
        return response

    def _http_error(self, exc: requests.HTTPError) -> ProviderError:
        status = exc.response.status_code if exc.response is not None else 0
        body = exc.response.text[:_MAX_ERROR_CHARS] if exc.response is not None else ""
        if status >= 500:
            kind = "server"
        elif status in (401, 403):
            kind = "auth"
        elif status == 429:
            kind = "rate_limited"
        else:
            kind = "http_error"
        detail = f"{self.name} request failed (HTTP {status})"
        if body:
            detail += f": {body}"
        return ProviderError(detail, provider=self.name, failure_kind=kind, status_code=status)

    def _parse(self, response: requests.Response, extract=None):
        """Decode a JSON body, optionally pulling fields out with extract(data).

        A body that is not JSON or lacks the expected fields is a "malformed"
        ProviderError, which is not retried.
        """
        try:
            data = response.json()
            return extract(data) if extract is not None else data
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderError(
                f"{self.name} returned a malformed response: {str(e)[:_MAX_ERROR_CHARS]}",
                provider=self.name,
                failure_kind="malformed",
            ) from e

    async def _call(self, fn, *args):
        """Run a blocking request on a thread, retrying transient failures."""
        return await with_retries(lambda: asyncio.to_thread(fn, *args), self.name)

    def _finish(self, text: str, audio: bytes, fmt: str) -> SynthesizedAudio:
        if not audio:
            raise ProviderError(
                f"{self.name} returned an empty audio payload",
                provider=self.name,
                failure_kind="empty",
            )
        duration = measure_duration(audio, fmt, self.name)
        return SynthesizedAudio(
            audio=audio, format=fmt, duration_seconds=duration,
            cost=cost_for(text, self.cost_per_1k),
        )

    async def health_check(self):
        try:
            await asyncio.to_thread(self._ping)
            return True
        except ProviderError as e:
            logger.error("%s health check failed: %s", self.name, e)
            return False

    def _ping(self) -> None:
        raise NotImplementedError


class ElevenLabsProvider(HTTPProvider):
    """Primary provider: large catalog, emotion-aware settings, voice cloning."""

    name = "elevenlabs"

    def __init__(self, api_key: str, base_url: str, model_id: str, cost_per_1k: float,
                 timeout: float | None = None):
        super().__init__(
            base_url,
            {"xi-api-key": api_key, "Content-Type": "application/json"},
            cost_per_1k,
            timeout,
        )
        self.model_id = model_id

    def _synthesize_blocking(self, text, voice_id, settings, emotion):
        adjusted = apply_emotion(settings or default_settings(), emotion)
        logger.info(
            "Generating speech with ElevenLabs voice=%s chars=%d emotion=%s",
            voice_id, len(text), emotion.kind if emotion else None,
        )
        response = self._request(
            "POST",
            f"/text-to-speech/{voice_id}",
            json={"text": text, "model_id": self.model_id, "voice_settings": adjusted.as_dict()},
            headers={"Accept": "audio/mpeg"},
        )
        return self._finish(text, response.content, "mp3")

    async def synthesize(self, text, voice_id, settings=None, emotion=None):
        return await self._call(self._synthesize_blocking, text, voice_id, settings, emotion)

    def _fetch_voices_blocking(self):
        return self._parse(
            self._request("GET", "/voices"),
            lambda data: [self._to_profile(v) for v in data.get("voices", [])],
        )

    async def fetch_voices(self):
        return await self._call(self._fetch_voices_blocking)

    def _to_profile(self, voice: dict) -> VoiceProfile:
        labels = voice.get("labels") or {}
        accent = labels.get("accent") or "neutral"
        descriptors = [labels[k] for k in ("descriptive", "description", "use_case") if labels.get(k)]
        if accent != "neutral":
            descriptors.append(accent)
        return VoiceProfile(
            id=voice["voice_id"],
            name=voice.get("name", voice["voice_id"]),
            provider=self.name,
            gender=gender_from_label(labels.get("gender")),
            age_bracket=age_bracket_from_label(labels.get("age")),
            accent=accent,
            descriptors=tuple(descriptors),
            cloned_from="elevenlabs:clone" if voice.get("category") == "cloned" else None,
            sample_url=voice.get("preview_url"),
        )

    def _clone_blocking(self, name, samples, description):
        files = [
            ("files", (f"sample_{i}.wav", sample, "audio/wav"))
            for i, sample in enumerate(samples)
        ]
        data = {"name": name}
        if description:
            data["description"] = description
        # multipart: drop the JSON content type for this request
        response = self._request(
            "POST", "/voices/add", timeout=self.clone_timeout_seconds,
            data=data, files=files, headers={"Content-Type": None},
        )
        voice_id = self._parse(response, lambda data: data["voice_id"])
        logger.info("Voice cloned with ElevenLabs: %s (%s)", name, voice_id)
        return VoiceProfile(
            id=voice_id,
            name=name,
            provider=self.name,
            gender="neutral",
            age_bracket=age_bracket_from_label(None),
            descriptors=(description.lower(),) if description else (),
            cloned_from=f"samples:{name}",
        )

    async def clone_voice(self, name: str, samples: list[bytes],
                          description: str | None = None) -> VoiceProfile:
        if not samples:
            raise ValidationError("Voice cloning needs at least one audio sample", stage="cloning")
        return await asyncio.wait_for(
            asyncio.to_thread(self._clone_blocking, name, samples, description),
            self.clone_timeout_seconds,
        )

    def _ping(self):
        self._request("GET", "/user")


class PlayHTProvider(HTTPProvider):
    """Fallback provider. Jobs are submitted, then polled until an audio URL exists."""

    name = "playht"

    def __init__(self, api_key: str, user_id: str, base_url: str, cost_per_1k: float,
                 sample_rate: int, timeout: float | None = None):
        super().__init__(
            base_url,
            {
                "Authorization": f"Bearer {api_key}",
                "X-User-ID": user_id,
                "Content-Type": "application/json",
            },
            cost_per_1k,
            timeout,
        )
        self.sample_rate = sample_rate

    def _submit_blocking(self, text, voice_id, settings) -> str:
        logger.info("Generating speech with PlayHT voice=%s chars=%d", voice_id, len(text))
        quality = "premium" if settings is not None and settings.use_speaker_boost else "standard"
        response = self._request(
            "POST",
            "/tts",
            json={
                "text": text,
                "voice": voice_id,
                "quality": quality,
                "output_format": "mp3",
                "speed": 1.0,
                "sample_rate": self.sample_rate,
            },
        )
        return self._parse(response, lambda job: job["id"])

    def _job_status_blocking(self, job_id: str) -> str | None:
        """Audio URL once the job is complete, None while it is still running."""
        def audio_url(job):
            status = job.get("status")
            if status == "complete":
                return job["output"]["url"]
            if status == "failed":
                raise ProviderError(
                    f"PlayHT job {job_id} failed", provider=self.name, failure_kind="job_failed",
                )
            return None

        return self._parse(self._request("GET", f"/tts/{job_id}"), audio_url)

    async def _poll(self, job_id: str) -> str:
        # sleeping on the loop lets a cancelled or timed-out call stop polling
        for _ in range(PLAYHT_POLL_ATTEMPTS):
            url = await self._call(self._job_status_blocking, job_id)
            if url is not None:
                return url
            await asyncio.sleep(PLAYHT_POLL_INTERVAL)
        raise ProviderError(
            f"PlayHT job {job_id} did not finish", provider=self.name, failure_kind="timeout",
        )

    def _download_blocking(self, text, audio_url):
        return self._finish(text, self._request("GET", audio_url).content, "mp3")

    async def synthesize(self, text, voice_id, settings=None, emotion=None):
        job_id = await self._call(self._submit_blocking, text, voice_id, settings)
        audio_url = await self._poll(job_id)
        return await self._call(self._download_blocking, text, audio_url)

    def _fetch_voices_blocking(self):
        return self._parse(
            self._request("GET", "/voices"),
            lambda data: [self._to_profile(v) for v in data],
        )

    async def fetch_voices(self):
        return await self._call(self._fetch_voices_blocking)

    def _to_profile(self, voice: dict) -> VoiceProfile:
        descriptors = [
            voice[k].lower() for k in ("style", "texture", "tempo", "loudness") if voice.get(k)
        ]
        return VoiceProfile(
            id=voice["id"],
            name=voice.get("name", voice["id"]),
            provider=self.name,
            gender=gender_from_label(voice.get("gender")),
            age_bracket=age_bracket_from_label(voice.get("age")),
            accent=(voice.get("accent") or "neutral").lower(),
            descriptors=tuple(descriptors),
            cloned_from="playht:clone" if voice.get("is_cloned") else None,
            sample_url=voice.get("sample"),
        )

    def _ping(self):
        self._request("GET", "/voices", params={"limit": 1})


class XTTSProvider(HTTPProvider):
    """Self-hosted XTTS-v2. Voices are speaker embeddings made by cloning."""

    name = "xtts"

    def __init__(self, base_url: str, enabled: bool = True, cost_per_1k: float = 0.0,
                 language: str = "en", timeout: float | None = None):
        super().__init__(base_url, {}, cost_per_1k, timeout)
        self.enabled = enabled
        self.language = language

    def _require_enabled(self):
        if not self.enabled:
            raise ProviderError(
                "XTTS provider is not enabled", provider=self.name, failure_kind="disabled",
            )

    def _synthesize_blocking(self, text, voice_id):
        logger.info("Generating speech with XTTS chars=%d", len(text))
        response = self._request(
            "POST", "/tts",
            json={"text": text, "speaker_wav": voice_id, "language": self.language},
        )
        return self._finish(text, response.content, "wav")

    async def synthesize(self, text, voice_id, settings=None, emotion=None):
        self._require_enabled()
        return await self._call(self._synthesize_blocking, text, voice_id)

    async def fetch_voices(self):
        # No catalog: every XTTS voice comes from clone_voice()
        return []

    def _profile_from_clone(self, data: dict, name: str, source: str) -> VoiceProfile:
        return VoiceProfile(
            id=data["embedding"],
            name=name,
            provider=self.name,
            gender="neutral",
            age_bracket=age_bracket_from_label(None),
            accent="neutral",
            cloned_from=source,
        )

    def _clone_blocking(self, sample, name, language):
        response = self._request(
            "POST", "/clone", timeout=self.clone_timeout_seconds,
            files={"audio": ("voice_sample.wav", sample, "audio/wav")},
            data={"language": language, "voice_name": name},
        )

        def to_profile(data):
            logger.info("Voice cloned with XTTS: %s (quality %s)", name, data.get("quality_score"))
            return self._profile_from_clone(data, name, f"sample:{name}")

        return self._parse(response, to_profile)

    async def clone_voice(self, sample: bytes, name: str, language: str = "en") -> VoiceProfile:
        self._require_enabled()
        return await asyncio.wait_for(
            asyncio.to_thread(self._clone_blocking, sample, name, language),
            self.clone_timeout_seconds,
        )

    def _cross_language_blocking(self, voice, target_language):
        response = self._request(
            "POST", "/clone/cross-language", timeout=self.clone_timeout_seconds,
            json={"speaker_embedding": voice.id, "target_language": target_language},
        )
        return self._parse(response, lambda data: self._profile_from_clone(
            data, f"{voice.name} ({target_language})", f"xtts:{voice.name}",
        ))

    async def cross_language_clone(self, voice: VoiceProfile, target_language: str) -> VoiceProfile:
        """Carry a cloned voice's characteristics into another language."""
        self._require_enabled()
        return await asyncio.wait_for(
            asyncio.to_thread(self._cross_language_blocking, voice, target_language),
            self.clone_timeout_seconds,
        )

    async def health_check(self):
        if not self.enabled:
            return False
        return await super().health_check()

    def _ping(self):
        self._request("GET", "/health")


def create_provider(name: str, settings: Settings) -> SynthesisProvider:
    """Build one provider from settings. Call once per process and share it."""
    if name == "elevenlabs":
        return ElevenLabsProvider(
            api_key=settings.elevenlabs_api_key,
            base_url=settings.elevenlabs_base_url,
            model_id=settings.elevenlabs_model_id,
            cost_per_1k=settings.elevenlabs_cost_per_1k,
            timeout=settings.tts_timeout,
        )
    if name == "playht":
        return PlayHTProvider(
            api_key=settings.playht_api_key,
            user_id=settings.playht_user_id,
            base_url=settings.playht_base_url,
            cost_per_1k=settings.playht_cost_per_1k,
            sample_rate=settings.sample_rate,
            timeout=settings.tts_timeout,
        )
    if name == "xtts":
        return XTTSProvider(
            base_url=settings.xtts_base_url,
            enabled=settings.xtts_enabled,
            cost_per_1k=settings.xtts_cost_per_1k,
            timeout=settings.tts_timeout,
        )
    if name == "edge":
        return EdgeTTSProvider()
    raise ValidationError(
        f"Unknown synthesis provider '{name}'",
        stage="config",
        hint="Use one of: elevenlabs, playht, xtts, edge.",
    )


def build_providers(settings: Settings) -> tuple[SynthesisProvider, SynthesisProvider | None]:
    """(primary, fallback) for one process. FALLBACK_PROVIDER=none disables fallback."""
    primary = create_provider(settings.primary_provider, settings)
    fallback_name = settings.fallback_provider
    if not fallback_name or fallback_name == "none" or fallback_name == primary.name:
        return primary, None
    return primary, create_provider(fallback_name, settings)
