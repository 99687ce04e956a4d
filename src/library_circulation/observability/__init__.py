"""Logfire observability for the circulation engine."""

import logging

import logfire

from ..config import CirculationConfig, get_config
from .decorators import trace_operation, trace_tool
from .metrics import record_circulation_event

logger = logging.getLogger(__name__)


def initialize_observability(config: CirculationConfig | None = None) -> bool:
    """
    Configure logfire from the circulation configuration.

    Spans and metrics are always recorded through the logfire API; they are
    only exported when observability is enabled.

    Returns:
        True if logfire was configured to export.
    """
    config = config or get_config()

    if not config.observability_enabled:
        logger.debug("Observability disabled via configuration")
        logfire.configure(send_to_logfire=False, console=False)
        return False

    logfire.configure(
        token=config.logfire_token,
        service_name=config.server_name,
        service_version=config.server_version,
        environment=config.environment,
        send_to_logfire="if-token-present",
        console=False,
    )

    if config.environment == "production":
        logfire.instrument_system_metrics()

    logger.info("Logfire observability enabled (environment=%s)", config.environment)
    return True


__all__ = [
    "initialize_observability",
    "record_circulation_event",
    "trace_operation",
    "trace_tool",
]
