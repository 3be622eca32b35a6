#!/usr/bin/env python3
"""CLI script to upgrade bare salesperson ids to object snapshots.

Usage:
    python scripts/migrate_salesperson_refs.py --tenant-id acme
    python scripts/migrate_salesperson_refs.py --tenant-id acme --dry-run
    python scripts/migrate_salesperson_refs.py --tenant-id acme --collections crm_deals

Reads the tenant's salespeople from the getSalespeopleForTenant function
and rewrites ``associations.salespeople`` on companies, deals, and contacts
so every entry carries the salesperson's id, name, and email. Entries for
uids missing from the directory are kept as bare ids. ``updatedAt`` is left
untouched.

Uses GCP_PROJECT_ID / FIREBASE_FUNCTIONS_* from environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.crm
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

COLLECTIONS = ("crm_companies", "crm_deals", "crm_contacts")


async def migrate(tenant_id: str, collections: list[str], dry_run: bool) -> dict[str, int]:
    """Normalize salesperson refs; returns the number of documents changed per collection."""
    from src.crm.api.middleware.logging import configure_structlog
    from src.crm.associations.refs import normalize_salesperson_entries
    from src.crm.associations.team import SalesTeamDirectory
    from src.crm.core.firestore import close_firestore
    from src.crm.functions.client import CloudFunctionsClient
    from src.crm.repositories.crm import CompanyRepository, ContactRepository, DealRepository

    configure_structlog()
    repositories = {
        "crm_companies": CompanyRepository(),
        "crm_deals": DealRepository(),
        "crm_contacts": ContactRepository(),
    }

    team = SalesTeamDirectory(tenant_id, CloudFunctionsClient.from_settings())
    directory = await team.directory()
    print(f"Loaded {len(directory)} salespeople for tenant {tenant_id}")

    changed: dict[str, int] = {}
    try:
        for name in collections:
            repo = repositories[name]
            documents = await repo.list(tenant_id)
            changed[name] = 0
            for doc in documents:
                current = (doc.get("associations") or {}).get("salespeople")
                if not current:
                    continue
                upgraded = normalize_salesperson_entries(current, directory)
                if upgraded == current:
                    continue
                changed[name] += 1
                if not dry_run:
                    await repo.update(
                        tenant_id,
                        doc["id"],
                        {"associations.salespeople": upgraded},
                        touch=False,
                    )
            verb = "would change" if dry_run else "changed"
            print(f"  {name}: {verb} {changed[name]} of {len(documents)} documents")
    finally:
        team.close()
        close_firestore()
    return changed


def main() -> None:
    parser = argparse.ArgumentParser(description="Upgrade bare salesperson ids to object snapshots")
    parser.add_argument("--tenant-id", required=True, help="Tenant whose documents are migrated")
    parser.add_argument(
        "--collections",
        nargs="+",
        choices=COLLECTIONS,
        default=list(COLLECTIONS),
        help="Collections to migrate (default: all)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing")
    args = parser.parse_args()

    asyncio.run(migrate(args.tenant_id, args.collections, args.dry_run))


if __name__ == "__main__":
    main()
