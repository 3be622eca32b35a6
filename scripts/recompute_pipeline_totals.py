#!/usr/bin/env python3
"""CLI script to recompute cached pipeline totals on every company of a tenant.

Usage:
    python scripts/recompute_pipeline_totals.py --tenant-id acme
    python scripts/recompute_pipeline_totals.py --tenant-id acme --company-id c1 --dry-run

Rolls each company's deals up through its locations and divisions and
stores ``pipelineValue``, ``closedValue`` and ``divisionTotals`` on the
company document.
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


async def recompute(tenant_id: str, company_id: str | None, dry_run: bool) -> int:
    """Returns the number of companies processed."""
    from src.crm.api.middleware.logging import configure_structlog
    from src.crm.core.firestore import close_firestore
    from src.crm.deals.totals import compute_company_totals
    from src.crm.deals.valuation import format_currency
    from src.crm.repositories.crm import CompanyRepository, DealRepository

    configure_structlog()
    companies = CompanyRepository()
    deals = DealRepository()

    try:
        if company_id:
            targets = [await companies.require(tenant_id, company_id)]
        else:
            targets = await companies.list(tenant_id)

        for company in targets:
            totals = compute_company_totals(
                await deals.list_for_company(tenant_id, company["id"]),
                await companies.list_locations(tenant_id, company["id"]),
            )
            pipeline = totals.pipeline_value
            print(
                f"  {company.get('companyName') or company['id']}: "
                f"{pipeline.deal_count} open deals, "
                f"{format_currency(pipeline.low)} - {format_currency(pipeline.high)}"
            )
            if not dry_run:
                await companies.update_totals(tenant_id, company["id"], totals.to_document())
    finally:
        close_firestore()
    return len(targets)


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute company pipeline totals")
    parser.add_argument("--tenant-id", required=True)
    parser.add_argument("--company-id", help="Only this company")
    parser.add_argument("--dry-run", action="store_true", help="Print totals without writing")
    args = parser.parse_args()

    count = asyncio.run(recompute(args.tenant_id, args.company_id, args.dry_run))
    print(f"Processed {count} companies")


if __name__ == "__main__":
    main()
