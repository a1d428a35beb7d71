"""Observability helpers: package logging and request trace IDs."""

from keyceremony.obs.settings import ObservabilitySettings
from keyceremony.obs.setup import configure_logging, current_trace_id, init_observability

__all__ = [
    "ObservabilitySettings",
    "configure_logging",
    "current_trace_id",
    "init_observability",
]
