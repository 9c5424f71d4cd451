"""Errors surfaced by the review generation pipeline."""

from __future__ import annotations


class ReviewGenerationError(Exception):
    """Base class for failures that abort a generation run.

    Every failure carries a message suitable for showing to the admin as-is.
    """

    code = "GENERATION_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": self.message}


class MissingCredentialError(ReviewGenerationError):
    """A catalog or generation API key has not been configured."""

    code = "MISSING_CREDENTIAL"


class UpstreamFetchError(ReviewGenerationError):
    """The catalog provider returned nothing usable."""

    code = "UPSTREAM_FETCH_FAILED"


class GenerationError(ReviewGenerationError):
    """The text-generation provider failed or returned no text."""

    code = "GENERATION_FAILED"


class CredentialInvalidError(GenerationError):
    """The generation provider no longer recognises the configured key."""

    code = "REAUTHENTICATE"

    def to_dict(self) -> dict[str, object]:
        return {**super().to_dict(), "reauthenticate": True}
