"""Observability — prompt registry, structured logging, and MLflow integration helpers."""

from civictrack.observability.logging import bind_fields, get_correlation_id, log_duration, setup_logging
from civictrack.observability.prompts import get_active_prompt, get_prompt_version

__all__ = [
    "bind_fields",
    "get_active_prompt",
    "get_correlation_id",
    "get_prompt_version",
    "log_duration",
    "setup_logging",
]
