"""
Migration module: the slot migration protocol.

- SlotStateController: importing/migrating handshake for one slot
- KeyMigrator: moves the keys of one slot
- OwnershipPropagator: announces the new owner to every master
- MigrationOrchestrator: drives the above over a slot range
"""

from .keys import KeyMigrator
from .orchestrator import (
    Completed,
    Failed,
    MigrationConfig,
    MigrationJob,
    MigrationOrchestrator,
    MigrationPhase,
    MigrationReport,
    SlotOutcome,
    Stage,
    migrate,
)
from .ownership import OwnershipPropagator, PropagationReport
from .slot_state import NodeSlotState, SlotMigrationState, SlotStateController

__all__ = [
    'KeyMigrator',
    'Completed',
    'Failed',
    'MigrationConfig',
    'MigrationJob',
    'MigrationOrchestrator',
    'MigrationPhase',
    'MigrationReport',
    'SlotOutcome',
    'Stage',
    'migrate',
    'OwnershipPropagator',
    'PropagationReport',
    'NodeSlotState',
    'SlotMigrationState',
    'SlotStateController',
]
