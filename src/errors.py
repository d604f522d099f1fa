"""Exception taxonomy for the standup engine.

Only ``NotFoundError`` and the ciphertext errors are meant to reach callers.
Provider and LLM failures are absorbed into fallback behaviour by the
aggregator and the generation pipeline.
"""


class StandupError(Exception):
    """Base class for all engine errors."""


class CredentialError(StandupError):
    """A source-control credential is missing, invalid, or expired."""


class PartialFetchError(StandupError):
    """Fetching one repository failed; its contribution is empty."""

    def __init__(self, repository: str, cause: BaseException) -> None:
        super().__init__(f"Failed to fetch activity for {repository}: {cause}")
        self.repository = repository
        self.cause = cause


class GenerationError(StandupError):
    """The LLM call failed or returned empty content."""


class NotFoundError(StandupError):
    """The requested standup or integration does not exist for this user."""


class MalformedCiphertextError(StandupError):
    """Stored ciphertext is not in ``iv_hex:ciphertext_hex`` form."""


class DecryptionFailedError(StandupError):
    """The cipher rejected the ciphertext (wrong key or corrupted padding)."""
