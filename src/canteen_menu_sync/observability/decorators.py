"""OpenTelemetry tracing decorators."""

import asyncio
import functools
from collections.abc import Callable
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span

F = TypeVar("F", bound=Callable[..., Any])


def _record_outcome(span: Span, error: Exception | None) -> None:
    if error is None:
        span.set_attribute("success", True)
        return
    span.set_attribute("success", False)
    span.set_attribute("error.type", type(error).__name__)
    span.set_attribute("error.message", str(error))
    span.record_exception(error)


def traced(span_name: str | None = None, service_name: str = "canteen-menu-sync") -> Callable[[F], F]:
    """Decorator to add OpenTelemetry tracing to a function.

    Creates a new span for the decorated function and marks it failed when
    the function raises. Sync and async functions are both supported.

    Args:
        span_name: Name for the span (defaults to function name if not provided)
        service_name: Service name for span attributes

    Returns:
        Decorated function with tracing

    Example:
        @traced("inventory.set_quantity_delta")
        async def set_quantity_delta(self, item_id: str, delta: int) -> MenuItem:
            ...
    """

    def decorator(func: F) -> F:
        name = span_name or func.__name__
        tracer = trace.get_tracer(service_name)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(name) as span:
                span.set_attribute("service.name", service_name)
                if span_name:
                    span.set_attribute("function.name", func.__name__)
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record_outcome(span, e)
                    raise
                _record_outcome(span, None)
                return result

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with tracer.start_as_current_span(name) as span:
                span.set_attribute("service.name", service_name)
                if span_name:
                    span.set_attribute("function.name", func.__name__)
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record_outcome(span, e)
                    raise
                _record_outcome(span, None)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper  # type: ignore

    return decorator
