"""Exception hierarchy for generation and assembly failures."""


class AudiobookError(RuntimeError):
    """Base error carrying the failing stage and an optional operator hint."""

    def __init__(self, detail: str, *, stage: str = "", hint: str | None = None):
        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class ValidationError(AudiobookError):
    """Precondition violation. Surfaced immediately, never retried."""


class MissingAssignmentError(ValidationError):
    def __init__(self, speaker: str | None, sequence: int):
        who = speaker or "narrator"
        super().__init__(
            f"No voice assignment for '{who}' (unit {sequence})",
            stage="generating",
            hint="Add the character to the cast file or assign a narrator voice.",
        )
        self.speaker = speaker
        self.sequence = sequence


class NoSuitableVoiceError(ValidationError):
    def __init__(self, character: str, filter_stage: str):
        super().__init__(
            f"No suitable voice found for character: {character} "
            f"(no candidates left after {filter_stage} filter)",
            stage="matching",
        )
        self.character = character
        self.filter_stage = filter_stage


class ProviderError(AudiobookError):
    """Network failure, timeout, non-2xx response or malformed payload."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str,
        failure_kind: str = "unknown",
        status_code: int | None = None,
    ):
        super().__init__(detail, stage="generating")
        self.provider = provider
        self.failure_kind = failure_kind
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider: str, timeout: float):
        super().__init__(
            f"{provider} call timed out after {timeout:g}s",
            provider=provider,
            failure_kind="timeout",
        )
        self.timeout = timeout


class ExhaustionError(AudiobookError):
    """Every provider failed for one unit. Fatal to the whole run."""

    def __init__(self, sequence: int, errors: list[ProviderError]):
        causes = "; ".join(f"{e.provider}: {e.detail}" for e in errors)
        super().__init__(
            f"All providers failed for unit {sequence}: {causes}",
            stage="generating",
            hint="Run the 'health' command to check provider availability.",
        )
        self.sequence = sequence
        self.errors = errors


class AudioEngineError(AudiobookError):
    """ffmpeg failure or malformed audio. Fatal to assembly."""

    def __init__(self, detail: str, hint: str | None = None):
        super().__init__(detail, stage="assembling", hint=hint)


class GenerationCancelled(AudiobookError):
    def __init__(self, completed: int, total: int):
        super().__init__(
            f"Generation cancelled after {completed}/{total} units",
            stage="generating",
        )
        self.completed = completed
        self.total = total
