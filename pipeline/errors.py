"""Error taxonomy shared by the generation pipeline and the API."""

from __future__ import annotations


class LearnHubError(Exception):
    """Base class for errors surfaced to callers of the generation flow."""

    error_type = "error"


class ValidationError(LearnHubError):
    """Input that normalizes to nothing usable. Never retried."""

    error_type = "validation"


class NoContentFound(LearnHubError):
    """The video search returned no candidates for the term. Not retried automatically."""

    error_type = "no_content"


class ProviderError(LearnHubError):
    """An external provider (search, stats, LLM) failed after retries."""

    error_type = "provider"


class StoreError(LearnHubError):
    """The backing store was unreachable or a read or write failed."""

    error_type = "store"
