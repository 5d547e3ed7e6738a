#!/usr/bin/env python3
"""
OpsDesk — Demo Data Seeder
Writes the demo admin, two ambassadors and four clients through the regular
audited operations. Does nothing when the store already has users.

Requires the package to be installed (pip install -e .).

Usage:
    python scripts/seed-demo-data.py
    python scripts/seed-demo-data.py --database-url sqlite+aiosqlite:///./demo.db --password s3cret!
"""

import argparse
import asyncio
import logging

from database import DATABASE_URL
from main import build_ops
from seed import seed_demo_data


async def run(database_url: str, password: str) -> bool:
    ops = await build_ops(database_url)
    try:
        return await seed_demo_data(ops, password=password)
    finally:
        await ops.store.close()


def main():
    parser = argparse.ArgumentParser(description="OpsDesk Demo Data Seeder")
    parser.add_argument("--database-url", type=str, default=DATABASE_URL, help="SQLAlchemy async URL")
    parser.add_argument("--password", type=str, default="123456", help="Password for every demo account")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    seeded = asyncio.run(run(args.database_url, args.password))
    print("Demo data seeded" if seeded else "Store not empty; nothing seeded")


if __name__ == "__main__":
    main()
