"""
Migration Orchestrator Module

Top-level driver of a resharding run: moves a contiguous range of hash slots
from a source node to a destination node, one slot at a time.

Per-slot state machine:

    START -> IMPORT_BEGUN -> MIGRATE_BEGUN -> KEYS_TRANSFERRED -> COMPLETED

and a failing step moves the slot to FAILED from wherever it is.

A failure ends the current slot only; the run moves on to the next slot and
every slot produces exactly one outcome. Nothing is retried here: how often a
single command is attempted is the NodeClient's CommandPolicy.

Every remote command is awaited before the next one is issued. Two slot-state
transitions on the same pair of nodes never overlap.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Set

from ..cluster.nodes import Address, ClusterNode
from ..cluster.slots import HashSlotRange
from ..cluster.topology import TopologyView
from ..config.settings import settings
from ..errors import CommandError, NotFoundError, PartialMigrationError, ReshardError
from ..protocol.commands import Command
from .keys import KeyMigrator
from .ownership import OwnershipPropagator, PropagationReport
from .slot_state import NodeSlotState, SlotStateController

logger = logging.getLogger(__name__)


class MigrationPhase(Enum):
    """Position of one slot in the migration state machine."""
    START = "start"
    IMPORT_BEGUN = "import_begun"
    MIGRATE_BEGUN = "migrate_begun"
    KEYS_TRANSFERRED = "keys_transferred"
    COMPLETED = "completed"
    FAILED = "failed"


class Stage(Enum):
    """The step a slot failed in."""
    BEGIN_IMPORT = "begin_import"
    BEGIN_MIGRATE = "begin_migrate"
    KEY_TRANSFER = "key_transfer"
    PROPAGATE = "propagate"


_NEXT_PHASE = {
    MigrationPhase.START: MigrationPhase.IMPORT_BEGUN,
    MigrationPhase.IMPORT_BEGUN: MigrationPhase.MIGRATE_BEGUN,
    MigrationPhase.MIGRATE_BEGUN: MigrationPhase.KEYS_TRANSFERRED,
    MigrationPhase.KEYS_TRANSFERRED: MigrationPhase.COMPLETED,
}

# Step attempted while a job sits in a phase
_STAGE_OF_PHASE = {
    MigrationPhase.START: Stage.BEGIN_IMPORT,
    MigrationPhase.IMPORT_BEGUN: Stage.BEGIN_MIGRATE,
    MigrationPhase.MIGRATE_BEGUN: Stage.KEY_TRANSFER,
    MigrationPhase.KEYS_TRANSFERRED: Stage.PROPAGATE,
}


@dataclass(frozen=True)
class MigrationConfig:
    """
    Immutable description of one resharding run.

    Attributes:
        source: Address of the node giving up the slots
        destination: Address of the node receiving the slots
        slots: Inclusive slot range to move
        timeout_ms: Per-key MIGRATE timeout
        rollback_on_abort: Clear slot flags when a slot fails before any key moved
    """
    source: Address
    destination: Address
    slots: HashSlotRange
    timeout_ms: int = field(default_factory=lambda: settings.MIGRATE_TIMEOUT_MS)
    rollback_on_abort: bool = field(default_factory=lambda: settings.ROLLBACK_ON_ABORT)

    def __post_init__(self):
        if self.source == self.destination:
            raise ValueError(f"Source and destination are the same address: {self.source}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")


@dataclass
class MigrationJob:
    """
    Working record of one slot's migration attempt.

    Owned by the orchestrator while the slot is processed and discarded
    afterwards.
    """
    slot: int
    source_id: str
    dest_id: str
    keys_total: int = 0
    keys_migrated: int = 0
    phase: MigrationPhase = MigrationPhase.START
    source_state: Optional[NodeSlotState] = None
    dest_state: Optional[NodeSlotState] = None

    def __post_init__(self):
        if self.source_state is None:
            self.source_state = NodeSlotState(self.source_id, self.slot)
        if self.dest_state is None:
            self.dest_state = NodeSlotState(self.dest_id, self.slot)

    @property
    def stage(self) -> Optional[Stage]:
        """The step currently being attempted (None once terminal)."""
        return _STAGE_OF_PHASE.get(self.phase)

    def advance(self, phase: MigrationPhase) -> None:
        """
        Move to the next phase.

        Raises:
            RuntimeError: If phase is not the successor of the current one
        """
        if phase is not MigrationPhase.FAILED and _NEXT_PHASE.get(self.phase) is not phase:
            raise RuntimeError(f"slot {self.slot}: illegal transition {self.phase.name} -> {phase.name}")
        if self.phase in (MigrationPhase.COMPLETED, MigrationPhase.FAILED):
            raise RuntimeError(f"slot {self.slot}: job already {self.phase.name}")
        self.phase = phase

    def record_progress(self, keys_moved: int, keys_total: int) -> None:
        self.keys_migrated = keys_moved
        self.keys_total = keys_total


@dataclass(frozen=True)
class SlotOutcome:
    """Result of one slot's migration."""
    slot: int

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class Completed(SlotOutcome):
    """
    The slot now belongs to the destination.

    Attributes:
        keys_moved: Keys transferred for this slot
        propagation: Per-master result of the ownership announcement
    """
    keys_moved: int = 0
    propagation: Optional[PropagationReport] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return True

    @property
    def stale_masters(self) -> Dict[str, ReshardError]:
        """Masters that did not accept the new owner and need reconciling."""
        return self.propagation.failed if self.propagation is not None else {}

    def __str__(self) -> str:
        text = f"slot {self.slot}: completed, {self.keys_moved} keys moved"
        if self.stale_masters:
            text += f", {len(self.stale_masters)} masters not updated"
        return text


@dataclass(frozen=True)
class Failed(SlotOutcome):
    """
    The slot's migration stopped at stage.

    Attributes:
        stage: Step that failed
        cause: The error raised by that step
        keys_moved: Keys transferred before the failure
        keys_remaining: Enumerated keys still on the source (None if not known)
        source_state: Source flag for the slot as left by this run
        dest_state: Destination flag for the slot as left by this run
        rolled_back: True if flags were cleared back to stable after the failure
    """
    stage: Stage
    cause: Exception = field(compare=False)
    keys_moved: int = 0
    keys_remaining: Optional[int] = None
    source_state: Optional[NodeSlotState] = field(default=None, compare=False)
    dest_state: Optional[NodeSlotState] = field(default=None, compare=False)
    rolled_back: bool = False

    @property
    def is_partial(self) -> bool:
        """Some keys were moved and some were not: the slot needs repair."""
        return self.keys_moved > 0 and bool(self.keys_remaining)

    def __str__(self) -> str:
        text = f"slot {self.slot}: failed at {self.stage.value} ({type(self.cause).__name__}: {self.cause})"
        text += f", {self.keys_moved} keys moved"
        if self.keys_remaining is not None:
            text += f", {self.keys_remaining} remaining"
        if self.rolled_back:
            text += ", rolled back"
        elif self.source_state is not None and self.dest_state is not None:
            if not (self.source_state.is_stable and self.dest_state.is_stable):
                text += f", flags left: {self.source_state}; {self.dest_state}"
        return text


@dataclass
class MigrationReport:
    """All slot outcomes of one run."""
    outcomes: List[SlotOutcome] = field(default_factory=list)

    @property
    def completed(self) -> List[Completed]:
        return [o for o in self.outcomes if isinstance(o, Completed)]

    @property
    def failed(self) -> List[Failed]:
        return [o for o in self.outcomes if isinstance(o, Failed)]

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def keys_moved(self) -> int:
        return sum(o.keys_moved for o in self.outcomes if isinstance(o, (Completed, Failed)))

    def summary(self) -> str:
        return (
            f"{len(self.completed)}/{len(self.outcomes)} slots completed, "
            f"{len(self.failed)} failed, {self.keys_moved} keys moved"
        )


class MigrationOrchestrator:
    """
    Moves a slot range from one node to another.

    Usage:
        orchestrator = MigrationOrchestrator(client, config)
        await orchestrator.prepare()
        async for outcome in orchestrator.run():
            print(outcome)

    Attributes:
        config: The run's MigrationConfig
        source: Source ClusterNode (set by prepare())
        destination: Destination ClusterNode (set by prepare())
    """

    def __init__(
            self,
            client,
            config: MigrationConfig,
            topology: TopologyView = None,
            slot_states: SlotStateController = None,
            key_migrator: KeyMigrator = None,
            propagator: OwnershipPropagator = None,
            meet_timeout: float = None,
            meet_poll_interval: float = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Object with an async execute(address, command) method
            config: What to move, from where, to where
            topology, slot_states, key_migrator, propagator: Components
                (created from client if not provided)
            meet_timeout: Seconds to wait for the two nodes to learn about
                each other after the meet (default from settings)
            meet_poll_interval: Seconds between membership checks while waiting
        """
        self.client = client
        self.config = config
        self.topology = topology if topology is not None else TopologyView(client)
        self.slot_states = slot_states if slot_states is not None else SlotStateController(client)
        self.key_migrator = key_migrator if key_migrator is not None else KeyMigrator(client)
        self.propagator = propagator if propagator is not None else OwnershipPropagator(client)
        self.meet_timeout = meet_timeout if meet_timeout is not None else settings.MEET_TIMEOUT
        self.meet_poll_interval = (
            meet_poll_interval if meet_poll_interval is not None else settings.MEET_POLL_INTERVAL
        )

        self.source: Optional[ClusterNode] = None
        self.destination: Optional[ClusterNode] = None
        self._masters: Set[ClusterNode] = set()
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    async def prepare(self) -> None:
        """
        Introduce the destination to the source and resolve both node ids.

        Must succeed before any slot is touched: slot-state commands naming
        a peer id the other node does not know are rejected.

        Raises:
            ConnectivityError: Source or destination unreachable
            CommandError: The meet was rejected and the destination is not
                already a known member
            NotFoundError: A node id could not be resolved, or the two nodes
                did not learn about each other within meet_timeout
        """
        await self._meet()

        self.source = await self._resolve(self.config.source)
        self.destination = await self._resolve(self.config.destination)
        if self.source.id == self.destination.id:
            raise ValueError(f"{self.config.source} and {self.config.destination} are the same node")
        logger.info(f"Source {self.config.source} is {self.source.id}")
        logger.info(f"Destination {self.config.destination} is {self.destination.id}")
        self._report_open_slots()

        await self._await_membership()

        # Snapshot of masters used for every slot of this run
        await self.topology.discover(self.config.source)
        self._masters = {self.source, self.destination} | self.topology.masters()
        for node in self._masters:
            if node.is_failing:
                logger.warning(f"Master {node.address} ({node.id}) is flagged as failing")
        logger.info(f"Ownership will be announced to {len(self._masters)} masters")

    async def _meet(self) -> None:
        source, dest = self.config.source, self.config.destination
        logger.info(f"Meeting with cluster {dest} via {source}")
        try:
            await self.client.execute(source, Command.meet(dest))
        except CommandError as e:
            await self.topology.discover(source)
            try:
                self.topology.find(dest)
            except NotFoundError:
                raise e
            logger.info(f"{dest} is already a member of the cluster ({e.message})")

    def _report_open_slots(self) -> None:
        """Warn about slots of the range already importing or migrating before this run."""
        for node in (self.source, self.destination):
            for slot in self.config.slots:
                state = node.slot_state(slot)
                if not state.is_stable:
                    logger.warning(f"Slot already open before this run: {state}")

    async def _resolve(self, address: Address) -> ClusterNode:
        """Resolve the node listening on address, keeping the address used to reach it."""
        node = await self.topology.resolve(address)
        return dataclasses.replace(node, address=address)

    async def _await_membership(self) -> None:
        """Wait until source and destination list each other."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.meet_timeout
        while True:
            source_view = {node.id for node in await self.topology.discover(self.config.source)}
            dest_view = {node.id for node in await self.topology.discover(self.config.destination)}
            if self.destination.id in source_view and self.source.id in dest_view:
                return
            if loop.time() >= deadline:
                raise NotFoundError(
                    f"{self.config.source} and {self.config.destination} did not learn "
                    f"about each other within {self.meet_timeout}s"
                )
            logger.debug("Waiting for cluster membership to propagate")
            await asyncio.sleep(self.meet_poll_interval)

    # ------------------------------------------------------------------
    # Slot loop
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Finish the slot in progress, then stop before the next one."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    async def run(self) -> AsyncIterator[SlotOutcome]:
        """
        Migrate every slot of the range, yielding one outcome per slot.

        A fresh call starts a fresh pass that re-reads key counts; nothing
        is resumed from a previous run. prepare() is called first if it has
        not been.
        """
        if self.source is None or self.destination is None:
            await self.prepare()

        logger.info(
            f"Moving slots {self.config.slots} from {self.config.source} "
            f"to {self.config.destination}"
        )
        for slot in self.config.slots:
            if self._stop_requested:
                logger.info(f"Stop requested, not starting slot {slot}")
                return
            yield await self.migrate_slot(slot)

    async def migrate_slot(self, slot: int) -> SlotOutcome:
        """
        Run the full state machine for one slot.

        Never raises for step failures: they are returned as Failed.
        """
        source, dest = self.source, self.destination
        job = MigrationJob(slot=slot, source_id=source.id, dest_id=dest.id)
        logger.debug(f"Slot {slot}: starting")
        owner = self.topology.owner_of(slot)
        if owner is not None and owner != source.id:
            logger.warning(
                f"Slot {slot}: owned by {self.topology.get(owner).address} ({owner}), "
                f"not by the source"
            )

        try:
            job.dest_state = await self.slot_states.begin_import(dest, slot, source.id)
            job.advance(MigrationPhase.IMPORT_BEGUN)

            job.source_state = await self.slot_states.begin_migrate(source, slot, dest.id)
            job.advance(MigrationPhase.MIGRATE_BEGUN)

            moved = await self.key_migrator.migrate_slot(
                source, dest, slot, self.config.timeout_ms, progress=job.record_progress
            )
            job.record_progress(moved, max(job.keys_total, moved))
            job.advance(MigrationPhase.KEYS_TRANSFERRED)

            report = await self.propagator.announce_ownership(self._masters, slot, dest.id, source.id)
            if not report.accepted_by(dest.id):
                error = report.outcomes.get(dest.id) or NotFoundError(f"destination {dest.id} was not informed")
                return await self._fail(job, error, keys_remaining=0)
            job.dest_state = NodeSlotState(dest.id, slot)
            source_error = report.outcomes.get(source.id)
            if isinstance(source_error, CommandError):
                # The source keeps the slot while it still holds keys
                remaining = await self._count_remaining(source, slot)
                return await self._fail(job, source_error, keys_remaining=remaining)
            if report.accepted_by(source.id):
                job.source_state = NodeSlotState(source.id, slot)
            job.advance(MigrationPhase.COMPLETED)

        except PartialMigrationError as e:
            job.keys_migrated = e.keys_moved
            return await self._fail(job, e.cause, keys_remaining=e.keys_remaining, keys_sent=True)
        except ReshardError as e:
            return await self._fail(job, e)

        outcome = Completed(slot=slot, keys_moved=job.keys_migrated, propagation=report)
        if outcome.stale_masters:
            logger.warning(
                f"Slot {slot}: masters with a stale view: "
                f"{', '.join(outcome.stale_masters)}"
            )
        logger.info(str(outcome))
        return outcome

    async def _fail(
            self,
            job: MigrationJob,
            cause: Exception,
            keys_remaining: Optional[int] = None,
            keys_sent: bool = False,
    ) -> Failed:
        stage = job.stage
        job.advance(MigrationPhase.FAILED)

        # Once a MIGRATE was issued a key may already sit on the destination
        rolled_back = False
        if self.config.rollback_on_abort and not keys_sent and stage in (
                Stage.BEGIN_MIGRATE, Stage.KEY_TRANSFER):
            rolled_back = await self._rollback_job(job)

        outcome = Failed(
            slot=job.slot,
            stage=stage,
            cause=cause,
            keys_moved=job.keys_migrated,
            keys_remaining=keys_remaining,
            source_state=job.source_state,
            dest_state=job.dest_state,
            rolled_back=rolled_back,
        )
        logger.error(str(outcome))
        return outcome

    async def _count_remaining(self, source: ClusterNode, slot: int) -> Optional[int]:
        try:
            return await self.client.execute(source.address, Command.count_keys_in_slot(slot))
        except ReshardError as e:
            logger.error(f"Slot {slot}: could not count keys left on {source.address}: {e}")
            return None

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def _rollback_job(self, job: MigrationJob) -> bool:
        """Clear the flags this run set for a slot that moved no keys."""
        cleared = True
        # Migrating side first, so the source never redirects to a node
        # that no longer imports the slot
        for node, state_attr in ((self.source, 'source_state'), (self.destination, 'dest_state')):
            if getattr(job, state_attr).is_stable:
                continue
            try:
                setattr(job, state_attr, await self.slot_states.clear_stable(node, job.slot))
            except ReshardError as e:
                logger.error(f"Slot {job.slot}: rollback on {node.address} failed: {e}")
                cleared = False
        if cleared:
            logger.warning(f"Slot {job.slot}: rolled back to stable on both nodes")
        return cleared

    async def rollback(self, slot: int) -> List[NodeSlotState]:
        """
        Clear importing/migrating flags for slot on source and destination.

        Operator-driven repair for slots left in a mixed state. Only the
        local flags are cleared: keys already moved stay on the destination.

        Raises:
            CommandError, ConnectivityError: A node rejected or missed the command
        """
        if self.source is None or self.destination is None:
            await self.prepare()
        return [
            await self.slot_states.clear_stable(self.source, slot),
            await self.slot_states.clear_stable(self.destination, slot),
        ]


async def migrate(
        client,
        source: Address,
        destination: Address,
        slot_start: int,
        slot_end: int,
        **options,
) -> MigrationReport:
    """
    Move slots slot_start..slot_end (inclusive) from source to destination.

    Args:
        client: Object with an async execute(address, command) method
        source, destination: Node addresses
        slot_start, slot_end: Inclusive slot range
        **options: Extra MigrationConfig fields (timeout_ms, rollback_on_abort)

    Returns:
        MigrationReport with one outcome per slot
    """
    config = MigrationConfig(
        source=source,
        destination=destination,
        slots=HashSlotRange(slot_start, slot_end),
        **options,
    )
    orchestrator = MigrationOrchestrator(client, config)
    report = MigrationReport()
    async for outcome in orchestrator.run():
        report.outcomes.append(outcome)
    return report
