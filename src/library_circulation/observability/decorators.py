"""Decorators for tracing circulation operations and tools."""

import functools
from collections.abc import Callable
from datetime import datetime
from typing import Any

import logfire

from ..errors import CirculationError


def trace_operation(operation: str):
    """Wrap a synchronous circulation operation in a logfire span."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with logfire.span(
                f"circulation.{operation}",
                operation=operation,
            ) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", kwargs)

                try:
                    result = func(*args, **kwargs)
                except CirculationError as e:
                    span.set_attribute("operation.success", False)
                    span.set_attribute("operation.reason", e.reason)
                    raise

                span.set_attribute("operation.success", True)
                span.set_attribute(
                    "operation.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                return result

        return wrapper

    return decorator


def trace_tool(tool_name: str):
    """Decorator to trace tool handler execution."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict[str, Any]) -> dict[str, Any]:
            with logfire.span(
                f"tool.execution.{tool_name}",
                tool_name=tool_name,
            ) as span:
                _add_attributes(span, "input", arguments)

                result = await func(arguments)

                span.set_attribute("tool.success", not result.get("isError", False))
                if "statusCode" in result:
                    span.set_attribute("tool.status_code", result["statusCode"])
                return result

        return wrapper

    return decorator


def _add_attributes(span, prefix: str, data: dict):
    """Add scalar inputs to the span."""
    for key, value in data.items():
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)
