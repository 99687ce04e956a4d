"""
Wiring for the circulation components.

Every component receives the store and configuration through its constructor;
this module builds one consistent set of them for the tool layer.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..config import CirculationConfig, get_config
from ..database.session import DatabaseManager, get_db_manager
from .copy_registry import CopyRegistry
from .engine import CirculationEngine
from .fines import FineCalculator
from .membership import MembershipGate
from .reservations import ReservationQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CirculationServices:
    """The circulation components sharing one store, configuration and clock."""

    db: DatabaseManager
    config: CirculationConfig
    registry: CopyRegistry
    gate: MembershipGate
    queue: ReservationQueue
    fines: FineCalculator
    engine: CirculationEngine


def build_services(
    db: DatabaseManager | None = None,
    config: CirculationConfig | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> CirculationServices:
    config = config or get_config()
    db = db or DatabaseManager(config=config)

    registry = CopyRegistry(db)
    gate = MembershipGate(db)
    queue = ReservationQueue(db, config, registry, clock)
    fines = FineCalculator(config.fine_rate_per_day)
    engine = CirculationEngine(
        db, config, registry=registry, gate=gate, queue=queue, fines=fines, clock=clock
    )
    return CirculationServices(
        db=db, config=config, registry=registry, gate=gate, queue=queue, fines=fines, engine=engine
    )


class _ServiceStore:
    """Internal storage for the process-wide services."""

    _instance: CirculationServices | None = None


def get_services() -> CirculationServices:
    """Get or build the process-wide circulation services."""
    if _ServiceStore._instance is None:  # type: ignore[reportPrivateUsage]
        config = get_config()
        db = get_db_manager(config.get_database_url())
        db.init_database()
        _ServiceStore._instance = build_services(db, config)  # type: ignore[reportPrivateUsage]
        logger.info("Circulation services ready (store: %s)", db.database_url)
    return _ServiceStore._instance  # type: ignore[reportPrivateUsage]


def reset_services() -> None:
    """Forget the process-wide services (useful for testing)."""
    _ServiceStore._instance = None  # type: ignore[reportPrivateUsage]
