"""Insert or update the default subscription plans.

Safe to run repeatedly: plans are matched by name.
"""

import argparse
import asyncio
from decimal import Decimal

from paysub.common.config import settings
from paysub.common.db import build_engine, build_session_factory
from paysub.services.subscriptions.repository import SubscriptionPlanRepository

DEFAULT_PLANS = [
    {
        "name": "Inicial",
        "description": "Entry plan for small companies",
        "amount": Decimal("49.99"),
        "active_jobs_limit": 3,
        "featured_jobs": 0,
        "is_featured": False,
        "has_advanced_dashboard": False,
        "plan_level": 1,
        "features": ["3 active job postings", "basic dashboard"],
    },
    {
        "name": "Intermediário",
        "description": "For companies hiring regularly",
        "amount": Decimal("74.99"),
        "active_jobs_limit": 10,
        "featured_jobs": 0,
        "is_featured": False,
        "has_advanced_dashboard": False,
        "plan_level": 2,
        "features": ["10 active job postings", "basic dashboard"],
    },
    {
        "name": "Avançado",
        "description": "Higher volume with featured placement",
        "amount": Decimal("99.99"),
        "active_jobs_limit": 20,
        "featured_jobs": 0,
        "is_featured": True,
        "has_advanced_dashboard": False,
        "plan_level": 3,
        "features": ["20 active job postings", "featured plan badge"],
    },
    {
        "name": "Destaque",
        "description": "Unlimited postings with a featured job and advanced dashboard",
        "amount": Decimal("199.99"),
        "active_jobs_limit": 999,
        "featured_jobs": 1,
        "is_featured": False,
        "has_advanced_dashboard": True,
        "plan_level": 4,
        "features": ["unlimited job postings", "1 featured job", "advanced dashboard"],
    },
]


async def seed(database_url: str) -> None:
    """Upsert every default plan and print the result."""

    engine = build_engine(database_url)
    plans = SubscriptionPlanRepository(build_session_factory(engine))
    try:
        for plan in DEFAULT_PLANS:
            fields = {key: value for key, value in plan.items() if key not in {"name", "amount"}}
            record = await plans.upsert(
                plan["name"],
                plan["amount"],
                currency="BRL",
                frequency=1,
                frequency_type="months",
                status="active",
                **fields,
            )
            print(f"plan id={record.id} name={record.name} amount={record.amount}")
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed default subscription plans.")
    parser.add_argument("--database-url", default=None, help="Defaults to DATABASE_URL")
    args = parser.parse_args()
    asyncio.run(seed(args.database_url or settings.database_url))


if __name__ == "__main__":
    main()
