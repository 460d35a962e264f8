"""Error taxonomy for the inference engine."""
from __future__ import annotations

from typing import Literal

ProviderErrorKind = Literal["rate_limited", "timeout", "malformed", "other"]

RETRYABLE_KINDS: frozenset[str] = frozenset({"rate_limited", "timeout", "malformed"})


class FeatureEngineError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(FeatureEngineError):
    """Caller passed a bad or unknown id or an empty input."""


class ProviderError(FeatureEngineError):
    """An embedding or reasoning provider call failed."""

    def __init__(self, message: str, *, kind: ProviderErrorKind = "other", retry_after: float | None = None):
        super().__init__(message)
        self.kind = kind
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class MalformedResponseError(ProviderError):
    def __init__(self, message: str):
        super().__init__(message, kind="malformed")


class ConsistencyError(FeatureEngineError):
    """A proposed mutation would violate a catalog invariant."""


class RelationshipBatchMismatchError(ConsistencyError):
    def __init__(self, feature_id: str, submitted: int, returned: int):
        super().__init__(
            f"Relationship batch for feature {feature_id} returned {returned} results for {submitted} evidence items"
        )
        self.feature_id = feature_id
        self.submitted = submitted
        self.returned = returned


class HierarchyCycleError(ConsistencyError):
    def __init__(self, child_id: str, parent_id: str):
        super().__init__(f"Assigning {parent_id} as parent of {child_id} would create a cycle")
        self.child_id = child_id
        self.parent_id = parent_id


class PipelineBusyError(FeatureEngineError):
    """Another run currently holds the pipeline lock."""

    def __init__(self, lock_key: str):
        super().__init__(f"Pipeline busy: lock '{lock_key}' is held by another run")
        self.lock_key = lock_key
