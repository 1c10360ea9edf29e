#!/usr/bin/env python3
"""
Rebuild inventory snapshots from the stock ledger, or report drift.

Usage:
    python3 scripts/recompute_snapshots.py --organization-id ORG \
        [--store-id STORE] [--actor-id ACTOR] [--check-only] [--database-url URL]

Without --store-id every store of the organization is processed.

--check-only prints the drift report as JSON and exits 1 when any snapshot
disagrees with the ledger.  Otherwise the snapshots are recomputed as an
ADMIN actor (--actor-id is required) and the results printed as JSON.

Exit codes:
    0  no drift (check-only) or recompute succeeded
    1  drift found (check-only)
    2  the ledger refused the operation (e.g. negative balance in a store
       that forbids negative stock)
"""

import argparse
import json
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Recompute inventory snapshots from the stock ledger")
    p.add_argument("--database-url", default=None, help="Database URL (default: active config)")
    p.add_argument("--organization-id", required=True, type=UUID)
    p.add_argument("--store-id", default=None, type=UUID, help="Limit to one store")
    p.add_argument("--actor-id", default=None, type=UUID, help="ADMIN actor recorded in the audit trail")
    p.add_argument("--check-only", action="store_true", help="Report drift without writing")
    args = p.parse_args(argv)
    if not args.check_only and args.actor_id is None:
        p.error("--actor-id is required unless --check-only is given")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from stock_config import get_active_config
    from stock_kernel.db.engine import get_session, init_engine_from_url
    from stock_kernel.db.immutability import register_immutability_listeners
    from stock_kernel.domain.actor import ActorContext
    from stock_kernel.domain.values import Role
    from stock_kernel.exceptions import StockKernelError
    from stock_kernel.logging_config import configure_logging
    from stock_kernel.selectors.catalog_selector import OrmStorePolicyReader
    from stock_kernel.selectors.movement_selector import MovementSelector
    from stock_modules.inventory import InventoryService

    config = get_active_config()
    configure_logging(level=config.logging.level)
    init_engine_from_url(
        args.database_url or config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    register_immutability_listeners()

    session = get_session()
    try:
        if args.store_id is not None:
            store_ids = [args.store_id]
        else:
            store_ids = OrmStorePolicyReader(session).list_store_ids(args.organization_id)

        if args.check_only:
            selector = MovementSelector(session)
            report = [
                {
                    "store_id": str(store_id),
                    "drift": [d.to_payload() for d in selector.detect_drift(args.organization_id, store_id)],
                }
                for store_id in store_ids
            ]
            drift_count = sum(len(entry["drift"]) for entry in report)
            print(json.dumps(
                {
                    "organization_id": str(args.organization_id),
                    "drift_count": drift_count,
                    "stores": report,
                },
                indent=2,
            ))
            return 1 if drift_count else 0

        actor = ActorContext(
            actor_id=args.actor_id,
            organization_id=args.organization_id,
            role=Role.ADMIN,
        )
        service = InventoryService(session, config=config)
        results = []
        try:
            for store_id in store_ids:
                result = service.recompute_inventory_snapshots(actor, store_id=store_id)
                results.append(result.to_payload())
        except StockKernelError as exc:
            print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 2
        print(json.dumps({"organization_id": str(args.organization_id), "stores": results}, indent=2))
        return 0
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
