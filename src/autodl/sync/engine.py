"""Distribution list sync from Entra ID groups.

For each configured group name the engine resolves the Entra group, makes
sure its distribution list exists, diffs the two memberships and applies
the difference one member at a time. Mappings are independent: a failure
in one never stops the run, and nothing is carried between runs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple

from autodl.core.mapping import GroupMapping
from autodl.core.reconcile import Diff, diff
from autodl.entra.groups import EntraGroupManager
from autodl.exchange.client import ExchangeCommandError, ExchangeGroup, ExchangeOnlineClient

logger = logging.getLogger(__name__)


class MappingStatus(Enum):
    """Where a mapping ended up in the sync state machine."""

    PENDING = "pending"
    RESOLVED = "resolved"
    SKIPPED_NOT_FOUND = "skipped_not_found"
    PROVISIONED = "provisioned"
    SKIPPED_PROVISION_FAILED = "skipped_provision_failed"
    SYNCED = "synced"
    FAILED = "failed"


class MemberFailure(NamedTuple):
    """A single add or remove that Exchange rejected."""

    identity: str
    reason: str


class ApplyResult(NamedTuple):
    """Outcome of applying a Diff to a distribution list."""

    added: list[str]
    removed: list[str]
    add_failures: list[MemberFailure]
    remove_failures: list[MemberFailure]


@dataclass
class MappingOutcome:
    """Result of syncing a single group mapping."""

    mapping: GroupMapping
    status: MappingStatus = MappingStatus.PENDING
    found: bool = False
    created: bool = False
    diff: Diff = field(default_factory=Diff)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    add_failures: list[MemberFailure] = field(default_factory=list)
    remove_failures: list[MemberFailure] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def has_changes(self) -> bool:
        """Check if any changes were made."""
        return self.created or bool(self.added) or bool(self.removed)

    @property
    def failure_count(self) -> int:
        """Count of failed member operations plus a mapping-level failure."""
        mapping_failed = self.status in (
            MappingStatus.SKIPPED_PROVISION_FAILED,
            MappingStatus.FAILED,
        )
        return len(self.add_failures) + len(self.remove_failures) + int(mapping_failed)


@dataclass
class SyncRunResult:
    """Result of a full sync run."""

    outcomes: list[MappingOutcome] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_synced(self) -> int:
        """Count of mappings that reached SYNCED."""
        return sum(1 for o in self.outcomes if o.status == MappingStatus.SYNCED)

    @property
    def total_skipped(self) -> int:
        """Count of mappings skipped because the group or list was unavailable."""
        return sum(
            1
            for o in self.outcomes
            if o.status
            in (MappingStatus.SKIPPED_NOT_FOUND, MappingStatus.SKIPPED_PROVISION_FAILED)
        )

    @property
    def total_created(self) -> int:
        """Count of lists created."""
        return sum(1 for o in self.outcomes if o.created)

    @property
    def total_added(self) -> int:
        """Count of members added across all lists."""
        return sum(len(o.added) for o in self.outcomes)

    @property
    def total_removed(self) -> int:
        """Count of members removed across all lists."""
        return sum(len(o.removed) for o in self.outcomes)

    @property
    def total_failures(self) -> int:
        """Count of failures across all mappings."""
        return sum(o.failure_count for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        """0 if every mapping finished without failures, else 1."""
        return 0 if self.total_failures == 0 else 1


async def ensure_list(
    exchange: ExchangeOnlineClient,
    mapping: GroupMapping,
    dry_run: bool = False,
) -> tuple[ExchangeGroup | None, bool]:
    """Resolve the distribution list for a mapping, creating it if absent.

    Args:
        exchange: Exchange Online client
        mapping: The mapping whose list is needed
        dry_run: If True, never create; report the list as would-be-created

    Returns:
        Tuple of (list or None in dry-run when absent, created flag)

    Raises:
        ExchangeCommandError: If the lookup or creation fails
    """
    existing = await exchange.get_distribution_group(mapping.target_address)
    if existing:
        logger.debug(f"Distribution list exists: {existing.primary_smtp_address}")
        return existing, False

    if dry_run:
        logger.info(f"Would create distribution list {mapping.target_address}")
        return None, True

    created = await exchange.create_distribution_group(
        name=mapping.target_display_name,
        display_name=mapping.target_display_name,
        alias=mapping.target_alias,
        primary_smtp_address=mapping.target_address,
    )
    return created, True


async def apply_diff(
    exchange: ExchangeOnlineClient,
    list_identity: str,
    changes: Diff,
) -> ApplyResult:
    """Apply a Diff to a distribution list one member at a time.

    A rejected member is recorded with the error text from Exchange and
    the remaining members are still processed. Nothing is retried.

    Args:
        exchange: Exchange Online client
        list_identity: Address of the distribution list
        changes: Members to add and remove

    Returns:
        ApplyResult with succeeded members and failures
    """
    result = ApplyResult(added=[], removed=[], add_failures=[], remove_failures=[])

    for member in sorted(changes.to_add):
        try:
            await exchange.add_distribution_group_member(list_identity, member)
            result.added.append(member)
        except ExchangeCommandError as e:
            logger.error(f"Failed to add {member} to {list_identity}: {e}")
            result.add_failures.append(MemberFailure(member, str(e)))

    for member in sorted(changes.to_remove):
        try:
            await exchange.remove_distribution_group_member(list_identity, member)
            result.removed.append(member)
        except ExchangeCommandError as e:
            logger.error(f"Failed to remove {member} from {list_identity}: {e}")
            result.remove_failures.append(MemberFailure(member, str(e)))

    return result


class DistributionListSyncManager:
    """Drive the sync of every configured group mapping.

    Both clients are created once per run by the caller and shared by
    every mapping.
    """

    def __init__(
        self,
        entra_groups: EntraGroupManager,
        exchange: ExchangeOnlineClient,
        dry_run: bool = False,
    ) -> None:
        """Initialize the sync manager.

        Args:
            entra_groups: Source of truth for group membership
            exchange: Distribution list backend
            dry_run: If True, compute changes without making them
        """
        self.entra_groups = entra_groups
        self.exchange = exchange
        self.dry_run = dry_run

    async def sync_mapping(self, mapping: GroupMapping) -> MappingOutcome:
        """Sync one group mapping.

        Args:
            mapping: Group to mirror into its distribution list

        Returns:
            MappingOutcome describing where the mapping stopped and what changed.
            An unexpected error (network, timeout) leaves it FAILED with the
            fields reached so far.
        """
        outcome = MappingOutcome(mapping=mapping)
        try:
            await self._sync_mapping(outcome)
        except Exception as e:
            logger.error(f"Failed to sync {mapping.source_group_name}: {e}")
            outcome.status = MappingStatus.FAILED
            outcome.error = str(e)
        return outcome

    async def _sync_mapping(self, outcome: MappingOutcome) -> None:
        """Walk one mapping through the state machine, updating ``outcome``."""
        mapping = outcome.mapping
        name = mapping.source_group_name

        group = await self.entra_groups.get_group_by_name(name)
        if group is None:
            logger.warning(f"Group not found in Entra ID: {name}")
            outcome.status = MappingStatus.SKIPPED_NOT_FOUND
            return
        outcome.found = True
        outcome.status = MappingStatus.RESOLVED

        try:
            dist_list, outcome.created = await ensure_list(self.exchange, mapping, self.dry_run)
        except ExchangeCommandError as e:
            logger.error(f"Could not provision {mapping.target_address} for {name}: {e}")
            outcome.status = MappingStatus.SKIPPED_PROVISION_FAILED
            outcome.error = str(e)
            return
        outcome.status = MappingStatus.PROVISIONED

        source = await self.entra_groups.get_member_identities(group.id)
        list_identity = mapping.target_address
        if dist_list and dist_list.primary_smtp_address:
            list_identity = dist_list.primary_smtp_address
        if dist_list and not outcome.created:
            members = await self.exchange.get_distribution_group_members(list_identity)
            target, ignored = members.mailboxes, members.ignored
        else:
            target, ignored = set(), set()

        # Only user mailboxes are managed; other recipient kinds are never added or removed
        candidates = source - target - ignored
        if candidates:
            ignored = ignored | await self.exchange.get_non_mailbox_recipients(candidates)
        outcome.ignored = sorted(source & ignored)
        if outcome.ignored:
            logger.info(
                f"{name}: ignoring {len(outcome.ignored)} members that are not user mailboxes"
            )
        source = source - ignored

        outcome.diff = diff(source, target)
        logger.info(
            f"{name}: {len(source)} in group, {len(target)} on list, "
            f"{len(outcome.diff.to_add)} to add, {len(outcome.diff.to_remove)} to remove"
        )

        if self.dry_run:
            outcome.added = sorted(outcome.diff.to_add)
            outcome.removed = sorted(outcome.diff.to_remove)
        elif not outcome.diff.is_empty:
            applied = await apply_diff(self.exchange, list_identity, outcome.diff)
            outcome.added = applied.added
            outcome.removed = applied.removed
            outcome.add_failures = applied.add_failures
            outcome.remove_failures = applied.remove_failures

        outcome.status = MappingStatus.SYNCED

    async def sync(self, mappings: list[GroupMapping]) -> SyncRunResult:
        """Sync every mapping in order, continuing past failures.

        Args:
            mappings: Mappings to process

        Returns:
            SyncRunResult with one outcome per mapping
        """
        result = SyncRunResult(dry_run=self.dry_run)

        for mapping in mappings:
            logger.info(f"Syncing {mapping.source_group_name} -> {mapping.target_address}")
            result.outcomes.append(await self.sync_mapping(mapping))

        return result
