"""
Philippine Retail Dataset Generator

Generates regions, brands, products, stores, devices and transactions and
either writes them as CSV files or seeds the configured database.

Usage:
    python scripts/generate_dataset.py --transactions 20000
    python scripts/generate_dataset.py --seed-db --create-tables
"""

import argparse
import asyncio
from pathlib import Path

from scout_analytics.config.logging import configure_logging
from scout_analytics.data.generators import PhilippineRetailGenerator, RetailDataset
from scout_analytics.data.seed import seed_database
from scout_analytics.database.connection import close_database, get_db, get_engine, init_database
from scout_analytics.database.models import Base

OUTPUT_DIR = Path(__file__).parent.parent / "data" / "generated"


def write_csv(dataset: RetailDataset, output_dir: Path) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    for name, frame in vars(dataset).items():
        path = output_dir / f"{name}.csv"
        frame.write_csv(path)
        size = path.stat().st_size / 1024 / 1024
        print(f"   📄 {path.name}: {frame.height:,} rows ({size:.2f} MB)")


async def seed(dataset: RetailDataset, create_tables: bool) -> None:
    configure_logging()
    await init_database()
    try:
        if create_tables:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        async with get_db(actor="generate_dataset", origin="seed") as db:
            counts = await seed_database(db, dataset)
    finally:
        await close_database()

    for table, count in counts.items():
        print(f"   ✅ {table}: {count:,}")


def main():
    parser = argparse.ArgumentParser(description="Philippine retail dataset generator")
    parser.add_argument("--stores", type=int, default=100, help="Approximate store count")
    parser.add_argument("--transactions", type=int, default=5000, help="Transactions to generate")
    parser.add_argument("--history-days", type=int, default=180, help="Days of history")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--seed-db", action="store_true", help="Load into the database instead of CSV")
    parser.add_argument("--create-tables", action="store_true", help="Create tables before seeding")
    parser.add_argument("--output", type=Path, default=OUTPUT_DIR, help="CSV output directory")
    args = parser.parse_args()

    print("=" * 60)
    print("🛒 Philippine Retail Dataset Generator")
    print("=" * 60 + "\n")

    generator = PhilippineRetailGenerator(seed=args.seed, history_days=args.history_days)
    dataset = generator.generate(n_stores=args.stores, n_transactions=args.transactions)
    print(f"📊 Generated {dataset.row_counts()}")

    if args.seed_db:
        asyncio.run(seed(dataset, args.create_tables))
    else:
        write_csv(dataset, args.output)
        print(f"\n📁 Output: {args.output}\n")


if __name__ == "__main__":
    main()
