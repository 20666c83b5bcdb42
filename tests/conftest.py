"""
Test Suite Configuration

A small retail network shared by the unit tests:

- Regions: NCR (1), Central Visayas (2)
- Brands: Alaska, Oishi (client); Nestle, Jack n Jill (competitor)
- Stores: SM Makati (1, NCR), Puregold Pasig (2, NCR),
  Aling Nena Sari-Sari (3, Central Visayas)
- Transactions t1..t5 plus one for an unknown store, with malformed line
  items mixed in
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List

import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine

from scout_analytics.aggregation.integrity import prepare_facts
from scout_analytics.aggregation.snapshot import FactSnapshot, recompute_transaction_totals
from scout_analytics.config.settings import (
    AccessSettings,
    AggregationSettings,
    AnomalySettings,
    RefreshSettings,
    RetentionSettings,
    Settings,
)
from scout_analytics.database.connection import build_session_factory
from scout_analytics.database.models import (
    Base,
    Brand,
    Device,
    LineItem,
    Product,
    Region,
    Store,
    Transaction,
)

# Wednesday, inside business hours
AS_OF = datetime(2025, 6, 18, 12, 0)


# =============================================================================
# REFERENCE DATA
# =============================================================================

REGIONS = [
    {"region_id": 1, "region_name": "NCR", "mega_region": "Luzon"},
    {"region_id": 2, "region_name": "Central Visayas", "mega_region": "Visayas"},
]

BRANDS = [
    {"brand_id": 1, "brand_name": "Alaska", "brand_category": "Dairy", "is_client_brand": True},
    {"brand_id": 2, "brand_name": "Nestle", "brand_category": "Dairy", "is_client_brand": False},
    {"brand_id": 3, "brand_name": "Oishi", "brand_category": "Snacks", "is_client_brand": True},
    {"brand_id": 4, "brand_name": "Jack n Jill", "brand_category": "Snacks", "is_client_brand": False},
]

PRODUCTS = [
    {"product_id": 1, "product_name": "Alaska Evaporada 370ml", "brand_id": 1,
     "category": "Dairy", "unit_price": 25.5, "is_fmcg": True},
    {"product_id": 2, "product_name": "Bear Brand 300g", "brand_id": 2,
     "category": "Dairy", "unit_price": 35.5, "is_fmcg": True},
    {"product_id": 3, "product_name": "Oishi Prawn Crackers 60g", "brand_id": 3,
     "category": "Snacks", "unit_price": 15.0, "is_fmcg": True},
    {"product_id": 4, "product_name": "Piattos Cheese 85g", "brand_id": 4,
     "category": "Snacks", "unit_price": 25.5, "is_fmcg": False},
]

STORES = [
    {"store_id": 1, "store_name": "SM Makati", "region_id": 1,
     "store_type": "supermarket", "size_tier": "large"},
    {"store_id": 2, "store_name": "Puregold Pasig", "region_id": 1,
     "store_type": "supermarket", "size_tier": "medium"},
    {"store_id": 3, "store_name": "Aling Nena Sari-Sari", "region_id": 2,
     "store_type": "sari_sari", "size_tier": "small"},
]

DEVICES = [
    {"device_id": "Pi5-001", "store_id": 1, "status": "active",
     "last_seen": AS_OF - timedelta(hours=1)},
    {"device_id": "Pi5-002", "store_id": 2, "status": "maintenance",
     "last_seen": AS_OF - timedelta(days=2)},
]


def make_transaction(
    transaction_id: str,
    store_id: int,
    transaction_ts: datetime,
    customer_id: str = None,
    device_id: str = None,
    influenced: bool = False,
    substitution: bool = False,
) -> Dict[str, Any]:
    return {
        "transaction_id": transaction_id,
        "store_id": store_id,
        "device_id": device_id,
        "transaction_ts": transaction_ts,
        "customer_id": customer_id,
        "gender": "F",
        "age": 34,
        "emotion": "happy",
        "duration_seconds": 120,
        "is_attendant_influenced": influenced,
        "substitution_occurred": substitution,
    }


TRANSACTIONS = [
    make_transaction("t1", 1, datetime(2025, 6, 17, 10, 0), "c1", "Pi5-001", influenced=True),
    make_transaction("t2", 1, datetime(2025, 6, 17, 10, 30), "c2", "Pi5-001", substitution=True),
    make_transaction("t3", 2, datetime(2025, 6, 16, 15, 0), None, "Pi5-002"),
    make_transaction("t4", 3, datetime(2025, 6, 10, 9, 0), "c1"),
    make_transaction("t5", 1, datetime(2025, 4, 1, 14, 0), "c1", "Pi5-001"),
]

# Store 99 does not exist
UNKNOWN_STORE_TRANSACTION = make_transaction("t6", 99, datetime(2025, 6, 17, 11, 0), "c3")

LINE_ITEMS = [
    {"line_item_id": 1, "transaction_id": "t1", "product_id": 1, "quantity": 2},
    {"line_item_id": 2, "transaction_id": "t1", "product_id": 3, "quantity": 1},
    {"line_item_id": 3, "transaction_id": "t2", "product_id": 2, "quantity": 1},
    {"line_item_id": 4, "transaction_id": "t2", "product_id": 2, "quantity": 0},
    {"line_item_id": 5, "transaction_id": "t3", "product_id": 1, "quantity": 1},
    {"line_item_id": 6, "transaction_id": "t3", "product_id": 4, "quantity": 2},
    {"line_item_id": 7, "transaction_id": "t3", "product_id": 999, "quantity": 1},
    {"line_item_id": 8, "transaction_id": "t4", "product_id": 3, "quantity": 4},
    {"line_item_id": 9, "transaction_id": "t5", "product_id": 1, "quantity": 10},
]

ORPHAN_LINE_ITEMS = [
    {"line_item_id": 10, "transaction_id": "t6", "product_id": 1, "quantity": 1},
    {"line_item_id": 11, "transaction_id": "ghost", "product_id": 1, "quantity": 1},
]

# Totals recomputed from the valid line items
EXPECTED_TOTALS = {"t1": 66.0, "t2": 35.5, "t3": 76.5, "t4": 60.0, "t5": 255.0}


# =============================================================================
# SETTINGS
# =============================================================================

@pytest.fixture
def as_of() -> datetime:
    return AS_OF


@pytest.fixture
def aggregation_settings() -> AggregationSettings:
    return AggregationSettings()


@pytest.fixture
def anomaly_settings() -> AnomalySettings:
    return AnomalySettings()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
        aggregation=AggregationSettings(),
        refresh=RefreshSettings(view_timeout_seconds=30.0, detection_timeout_seconds=30.0),
        anomaly=AnomalySettings(),
        access=AccessSettings(business_timezone="UTC"),
        retention=RetentionSettings(),
    )


# =============================================================================
# SNAPSHOTS
# =============================================================================

@pytest.fixture
def snapshot() -> FactSnapshot:
    """Reference network with malformed rows mixed in"""
    return FactSnapshot.from_records(
        as_of=AS_OF,
        transactions=TRANSACTIONS + [UNKNOWN_STORE_TRANSACTION],
        line_items=LINE_ITEMS + ORPHAN_LINE_ITEMS,
        products=PRODUCTS,
        brands=BRANDS,
        stores=STORES,
        regions=REGIONS,
        devices=DEVICES,
    )


@pytest.fixture
def transaction_factory():
    return make_transaction


@pytest.fixture
def prepared(snapshot):
    facts, _ = prepare_facts(snapshot)
    return facts


@pytest.fixture
def build_snapshot():
    """Snapshot over the reference catalog with caller-supplied facts"""
    def _build(
        transactions: List[Dict[str, Any]],
        line_items: List[Dict[str, Any]],
        as_of: datetime = AS_OF,
        devices: List[Dict[str, Any]] = DEVICES,
    ) -> FactSnapshot:
        return FactSnapshot.from_records(
            as_of=as_of,
            transactions=transactions,
            line_items=line_items,
            products=PRODUCTS,
            brands=BRANDS,
            stores=STORES,
            regions=REGIONS,
            devices=devices,
        )
    return _build


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
async def test_engine(tmp_path):
    """Create test database engine"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scout.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest.fixture
async def test_db(session_factory):
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


def _reference_rows():
    return [
        (Region, [
            {"region_id": r["region_id"], "name": r["region_name"], "mega_region": r["mega_region"]}
            for r in REGIONS
        ]),
        (Brand, [
            {"brand_id": b["brand_id"], "name": b["brand_name"],
             "category": b["brand_category"], "is_client_brand": b["is_client_brand"]}
            for b in BRANDS
        ]),
        (Product, [
            {"product_id": p["product_id"], "name": p["product_name"], "brand_id": p["brand_id"],
             "category": p["category"], "unit_price": p["unit_price"], "is_fmcg": p["is_fmcg"]}
            for p in PRODUCTS
        ]),
        (Store, [
            {"store_id": s["store_id"], "name": s["store_name"], "region_id": s["region_id"],
             "store_type": s["store_type"], "size_tier": s["size_tier"]}
            for s in STORES
        ]),
        (Device, DEVICES),
    ]


async def insert_facts(session, transactions, line_items) -> None:
    if transactions:
        await session.execute(insert(Transaction), transactions)
    if line_items:
        await session.execute(insert(LineItem), line_items)
    await recompute_transaction_totals(session)


@pytest.fixture
def add_facts(session_factory):
    """Append transactions and line items, then recompute totals"""
    async def _add(transactions, line_items) -> None:
        async with session_factory() as session:
            async with session.begin():
                await insert_facts(session, transactions, line_items)
    return _add


@pytest.fixture
def seed_reference(session_factory):
    """Insert the reference catalog only"""
    async def _seed() -> None:
        async with session_factory() as session:
            async with session.begin():
                for model, rows in _reference_rows():
                    await session.execute(insert(model), rows)
    return _seed


@pytest.fixture
async def seeded_session_factory(session_factory, seed_reference):
    """Reference data plus t1..t5 with their line items"""
    await seed_reference()
    async with session_factory() as session:
        async with session.begin():
            await insert_facts(session, TRANSACTIONS, LINE_ITEMS)
    return session_factory
