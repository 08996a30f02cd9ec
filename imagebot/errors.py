from typing import Sequence


class TranslationError(Exception):
    """User-input fault. The message is shown to the user as-is."""


class ConflictingPreset(TranslationError):
    def __init__(self, current: str, token: str):
        self.current = current
        self.token = token
        super().__init__(
            f"Only one style preset can be used per request "
            f"(got `!{current}` and `!{token}`)."
        )


class UnsupportedModifier(TranslationError):
    def __init__(self, token: str, directives: Sequence[str], presets: Sequence[str]):
        self.token = token
        self.options = [*directives, *presets]
        directive_list = ", ".join(f"!{name}" for name in directives)
        preset_list = ", ".join(f"!{name}" for name in presets)
        super().__init__(
            f"Unsupported modifier `!{token}`.\n"
            f"Supported modifiers: {directive_list}\n"
            f"Style presets: {preset_list}"
        )


class EmptyPrompt(TranslationError):
    def __init__(self):
        super().__init__("Your prompt is empty once modifiers are removed.")


class BackendError(Exception):
    kind = "backend"


class TransportError(BackendError):
    kind = "transport"


class DecodeError(BackendError):
    kind = "decode"


class BackendReportedError(BackendError):
    kind = "backend-reported"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Got an error from the backend: {detail}")


class UnknownStatus(BackendError):
    kind = "unknown-status"

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Got an unknown HTTP status code from the backend: {status_code}")


class MissingOutput(BackendError):
    kind = "missing-output"

    def __init__(self):
        super().__init__("Did not get an output from the backend!")


class PollTimeout(BackendError):
    kind = "timeout"

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Job {job_id} did not finish after {attempts} status checks")
