"""Runtime settings read from the environment, defaulting to constants."""

import os
from dataclasses import dataclass

from audiobook_ensemble.constants import (
    BATCH_SIZE,
    ELEVENLABS_BASE_URL,
    ELEVENLABS_COST_PER_1K,
    ELEVENLABS_MODEL_ID,
    FALLBACK_PROVIDER,
    OUTPUT_BITRATE,
    OUTPUT_SAMPLE_RATE,
    PLAYHT_BASE_URL,
    PLAYHT_COST_PER_1K,
    PRIMARY_PROVIDER,
    TARGET_LUFS,
    TTS_TIMEOUT_SECONDS,
    XTTS_BASE_URL,
    XTTS_COST_PER_1K,
)
from audiobook_ensemble.errors import ValidationError

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    elevenlabs_api_key: str = ""
    elevenlabs_base_url: str = ELEVENLABS_BASE_URL
    elevenlabs_model_id: str = ELEVENLABS_MODEL_ID
    elevenlabs_cost_per_1k: float = ELEVENLABS_COST_PER_1K
    playht_api_key: str = ""
    playht_user_id: str = ""
    playht_base_url: str = PLAYHT_BASE_URL
    playht_cost_per_1k: float = PLAYHT_COST_PER_1K
    xtts_base_url: str = XTTS_BASE_URL
    xtts_enabled: bool = False
    xtts_cost_per_1k: float = XTTS_COST_PER_1K
    primary_provider: str = PRIMARY_PROVIDER
    fallback_provider: str = FALLBACK_PROVIDER
    batch_size: int = BATCH_SIZE
    tts_timeout: float = TTS_TIMEOUT_SECONDS
    target_lufs: float = TARGET_LUFS
    bitrate: str = OUTPUT_BITRATE
    sample_rate: int = OUTPUT_SAMPLE_RATE


def _number(env, key, default, cast):
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValidationError(
            f"{key} must be a number, got '{raw}'", stage="config",
        ) from None


def load_settings(env=None) -> Settings:
    """Build Settings from environment variables (os.environ by default)."""
    env = os.environ if env is None else env
    settings = Settings(
        elevenlabs_api_key=env.get("ELEVENLABS_API_KEY", ""),
        elevenlabs_base_url=env.get("ELEVENLABS_BASE_URL", ELEVENLABS_BASE_URL),
        elevenlabs_model_id=env.get("ELEVENLABS_MODEL_ID", ELEVENLABS_MODEL_ID),
        playht_api_key=env.get("PLAYHT_API_KEY", ""),
        playht_user_id=env.get("PLAYHT_USER_ID", ""),
        playht_base_url=env.get("PLAYHT_BASE_URL", PLAYHT_BASE_URL),
        xtts_base_url=env.get("XTTS_BASE_URL", XTTS_BASE_URL),
        xtts_enabled=env.get("XTTS_ENABLED", "").strip().lower() in _TRUE_VALUES,
        primary_provider=env.get("PRIMARY_PROVIDER", PRIMARY_PROVIDER).lower(),
        fallback_provider=env.get("FALLBACK_PROVIDER", FALLBACK_PROVIDER).lower(),
        batch_size=_number(env, "BATCH_SIZE", BATCH_SIZE, int),
        tts_timeout=_number(env, "TTS_TIMEOUT_SECONDS", TTS_TIMEOUT_SECONDS, float),
        target_lufs=_number(env, "AUDIO_NORMALIZATION_LUFS", TARGET_LUFS, float),
        bitrate=env.get("AUDIO_BITRATE", OUTPUT_BITRATE),
        sample_rate=_number(env, "AUDIO_SAMPLE_RATE", OUTPUT_SAMPLE_RATE, int),
    )
    if settings.batch_size < 1:
        raise ValidationError("BATCH_SIZE must be at least 1", stage="config")
    return settings
