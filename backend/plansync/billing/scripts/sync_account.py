"""Check and repair subscription drift against Stripe from the command line.

Dry run unless ``--fix`` is given. Run inside the backend container:
    python -m plansync.billing.scripts.sync_account <account_id> [--fix] [--cancel-duplicates]
    python -m plansync.billing.scripts.sync_account --sweep [--fix] [--limit 500]
"""

import argparse
import asyncio
import logging
import sys
import uuid
from dataclasses import replace

from plansync.exceptions import PlanSyncError
from plansync.services.container import SyncServices, get_sync_services
from plansync.services.reconciliation import AUTO_FIX
from plansync.services.sweeper import SweepOptions

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile local plan records with Stripe subscriptions."
    )
    parser.add_argument("account_id", nargs="?", type=uuid.UUID, help="Account to check")
    parser.add_argument("--fix", action="store_true", help="Write fixes (default: dry run)")
    parser.add_argument(
        "--cancel-duplicates",
        action="store_true",
        help="Cancel active subscriptions other than the canonical one (requires --fix)",
    )
    parser.add_argument("--actor", default=None, help="Audit actor (default: SYNC_ACTOR)")
    parser.add_argument("--sweep", action="store_true", help="Check every billed account")
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--offset", type=int, default=0)
    parser.add_argument("--concurrency", type=int, default=None)
    return parser


async def check_account(services: SyncServices, args: argparse.Namespace) -> int:
    inspection = await services.engine.inspect(args.account_id)
    account = inspection.account
    print(f"Account {account.account_id}")
    print(f"  Local:    {account.plan.value} / {account.status.value}")
    print(f"            customer={account.external_customer_id}")
    print(f"            subscription={account.external_subscription_id}")

    if inspection.fetched is not None:
        print(f"  Stripe:   {len(inspection.fetched.snapshots)} subscription(s)")
        for s in inspection.fetched.snapshots:
            marker = "*" if s.external_id == inspection.resolved.canonical_external_id else " "
            print(
                f"          {marker} {s.external_id} {s.status.value} "
                f"{inspection.fetched.tier_of(s).value} price={s.price_id}"
            )

    resolved = inspection.resolved
    print(f"  Resolved: {resolved.tier.value} / {resolved.status.value}")
    if resolved.duplicate_ids:
        print(f"  Duplicates: {', '.join(resolved.duplicate_ids)}")

    if inspection.in_sync and not resolved.duplicate_ids:
        print("In sync, nothing to do.")
        return 0

    if not args.fix:
        print("\nDry run. Re-run with --fix to apply.")
        return 0

    mode = replace(AUTO_FIX, cleanup_duplicates=args.cancel_duplicates)
    result = await services.force_sync(args.account_id, actor=args.actor, mode=mode)
    print(f"\n{result.message}")
    if result.cleanup is not None:
        print(f"Canceled duplicates: {result.cleanup.canceled or 'none'}")
        for subscription_id, error in result.cleanup.failed.items():
            print(f"  Failed to cancel {subscription_id}: {error}")
        if not result.cleanup.ok:
            return 1
    return 0


async def sweep(services: SyncServices, args: argparse.Namespace) -> int:
    summary = await services.run_batch_sweep(
        SweepOptions(
            dry_run=not args.fix,
            limit=args.limit or services.config.sweep_limit,
            offset=args.offset,
            concurrency=args.concurrency or services.config.sweep_concurrency,
            cleanup_duplicates=args.cancel_duplicates,
        )
    )
    label = "would fix" if summary.dry_run else "fixed"
    print(
        f"Checked {summary.checked}: {summary.in_sync} in sync, "
        f"{summary.fixed} {label}, {summary.errors} error(s)"
    )
    for fix in summary.details:
        print(f"  {fix.account_id}: {fix.from_tier.value} -> {fix.to_tier.value}")
    for error in summary.error_details:
        print(f"  {error.account_id}: ERROR {error.error}")
    if summary.duplicates_canceled:
        print(f"Canceled {summary.duplicates_canceled} duplicate subscription(s)")
    return 1 if summary.errors else 0


async def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.sweep and args.account_id is None:
        parser.error("an account_id is required unless --sweep is given")

    services = get_sync_services()
    try:
        if args.sweep:
            return await sweep(services, args)
        return await check_account(services, args)
    except PlanSyncError as e:
        logger.error("Sync failed: %s", e)
        return 1
    finally:
        from plansync.database import engine

        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main()))
