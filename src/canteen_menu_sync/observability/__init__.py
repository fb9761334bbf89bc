"""OpenTelemetry instrumentation and observability utilities."""

from canteen_menu_sync.observability.config import configure_logging, setup_observability
from canteen_menu_sync.observability.decorators import traced

__all__ = ["setup_observability", "configure_logging", "traced"]
