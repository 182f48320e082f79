"""
Adapters layer - Storage backends for schedules, services and appointments.
"""

from .memory_store import InMemoryAppointmentStore, InMemoryScheduleRepository, InMemoryServiceCatalog
from .sql_store import (
    SqlAppointmentStore,
    SqlScheduleRepository,
    SqlServiceCatalog,
    create_store_engine,
    init_schema,
)

__all__ = [
    "InMemoryAppointmentStore",
    "InMemoryScheduleRepository",
    "InMemoryServiceCatalog",
    "SqlAppointmentStore",
    "SqlScheduleRepository",
    "SqlServiceCatalog",
    "create_store_engine",
    "init_schema",
]
