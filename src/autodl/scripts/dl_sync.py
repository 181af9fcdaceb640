"""CLI script to sync Exchange distribution lists from Entra ID groups.

Each configured group "Name" is mirrored into a distribution list
"Name - autoDL" <Name@domain>, created on first run.

Prerequisites:
1. MS Graph app credentials with Group.Read.All (MS_GRAPH_* variables)
2. PowerShell 7+ with ExchangeOnlineManagement module
3. Certificate-based Exchange authentication (EXCHANGE_* variables)
"""

import argparse
import asyncio
import logging
import sys

from autodl.core.config import SyncConfig, load_sync_config
from autodl.core.mapping import GroupMapping
from autodl.core.msgraph_client import get_graph_client
from autodl.entra.groups import EntraGroupManager
from autodl.exchange.client import ExchangeOnlineClient
from autodl.sync.engine import (
    DistributionListSyncManager,
    MappingStatus,
    SyncRunResult,
)

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def configure_logging(verbose: bool = False) -> None:
    """Set up console logging and silence chatty HTTP loggers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("azure.identity").setLevel(logging.WARNING)
    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)


def select_mappings(config: SyncConfig, only_groups: list[str] | None = None) -> list[GroupMapping]:
    """Build mappings from config, optionally restricted to some group names.

    Raises:
        ValueError: If a requested group is not in the config
    """
    names = config.groups
    if only_groups:
        unknown = sorted(set(only_groups) - set(config.groups))
        if unknown:
            raise ValueError(f"Groups not in config: {', '.join(unknown)}")
        names = [name for name in config.groups if name in only_groups]
    return GroupMapping.build(names, config.email_domain)


def print_result(result: SyncRunResult) -> None:
    """Print sync results in a readable format."""
    dry_run = result.dry_run

    logger.info("")
    logger.info("=" * 50)
    logger.info("Results")
    logger.info("=" * 50)

    for outcome in result.outcomes:
        mapping = outcome.mapping
        logger.info(f"\n{mapping.source_group_name} -> {mapping.target_address}:")

        if outcome.status == MappingStatus.SKIPPED_NOT_FOUND:
            logger.warning("  Skipped: group not found in Entra ID")
            continue
        if outcome.status == MappingStatus.SKIPPED_PROVISION_FAILED:
            logger.error(f"  Skipped: could not create list: {outcome.error}")
            continue
        if outcome.status == MappingStatus.FAILED:
            logger.error(f"  Failed: {outcome.error}")
            continue

        if outcome.created:
            action = "Would create" if dry_run else "Created"
            logger.info(f"  List: {action} ({mapping.target_display_name})")

        if outcome.added:
            action = "Would add" if dry_run else "Added"
            logger.info(f"  {action}: {', '.join(outcome.added)}")

        if outcome.removed:
            action = "Would remove" if dry_run else "Removed"
            logger.info(f"  {action}: {', '.join(outcome.removed)}")

        if outcome.ignored:
            logger.info(f"  Not user mailboxes (left alone): {', '.join(outcome.ignored)}")

        for failure in outcome.add_failures:
            logger.error(f"  Add failed: {failure.identity}: {failure.reason}")
        for failure in outcome.remove_failures:
            logger.error(f"  Remove failed: {failure.identity}: {failure.reason}")

        if not outcome.has_changes and not outcome.failure_count:
            logger.info("  No changes needed")

    logger.info("")
    logger.info("-" * 50)
    logger.info("Summary:")
    logger.info(f"  Groups processed: {len(result.outcomes)}")
    logger.info(f"  Groups synced: {result.total_synced}")
    logger.info(f"  Groups skipped: {result.total_skipped}")
    logger.info(f"  Lists created: {result.total_created}")
    logger.info(f"  Members added: {result.total_added}")
    logger.info(f"  Members removed: {result.total_removed}")
    if result.total_failures:
        logger.info(f"  Failures: {result.total_failures}")


async def run_sync(
    config_path: str | None = None,
    only_groups: list[str] | None = None,
    dry_run: bool = False,
) -> int:
    """Run the distribution list sync.

    Args:
        config_path: Path to the sync config (default location if None)
        only_groups: Restrict to these configured group names
        dry_run: If True, don't make changes

    Returns:
        Exit code
    """
    logger.info("=" * 50)
    logger.info("Distribution List Sync")
    logger.info("=" * 50)

    if dry_run:
        logger.info("DRY RUN - no changes will be made")

    try:
        config = load_sync_config(config_path)
        mappings = select_mappings(config, only_groups)
        graph_client = get_graph_client()
        exchange = ExchangeOnlineClient(timeout=config.command_timeout_seconds)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    logger.info(f"Groups: {len(mappings)}, domain: {config.email_domain}")

    manager = DistributionListSyncManager(
        entra_groups=EntraGroupManager(graph_client),
        exchange=exchange,
        dry_run=dry_run,
    )
    result = await manager.sync(mappings)

    print_result(result)
    return result.exit_code


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Sync Exchange distribution lists from Entra ID group membership",
    )
    parser.add_argument(
        "--config",
        help="Path to sync config JSON (default: $AUTODL_CONFIG or config/autodl.json)",
    )
    parser.add_argument(
        "--group",
        action="append",
        dest="groups",
        metavar="NAME",
        help="Only sync this configured group (can be specified multiple times)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    configure_logging(verbose=args.verbose)

    exit_code = asyncio.run(
        run_sync(
            config_path=args.config,
            only_groups=args.groups,
            dry_run=args.dry_run,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
