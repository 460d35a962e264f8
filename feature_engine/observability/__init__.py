"""Observability helpers."""

from feature_engine.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_stage,
    record_provider_call,
    record_unit_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_stage",
    "record_provider_call",
    "record_unit_failure",
]
