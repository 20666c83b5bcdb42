"""
Synthetic Data Generator

Generates a realistic Philippine retail dataset for development and demos.
Includes:
- Regions with population and economic weight
- Client and competitor brands with a priced product catalog
- Stores distributed by regional economic weight, with capture devices
- Transactions with shopper demographics and line items biased towards
  client brands where their regional presence is strong
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import numpy as np
import polars as pl
from faker import Faker

from scout_analytics.database.models import DeviceStatus, SizeTier, StoreType


# =============================================================================
# REFERENCE DATA
# =============================================================================

# (mega_region, name, population_millions, economic_weight, urban_penetration, client_presence)
REGIONS = [
    ("Luzon", "National Capital Region (NCR)", 13.48, 0.22, 1.00, 0.85),
    ("Luzon", "CALABARZON", 14.41, 0.18, 0.75, 0.80),
    ("Luzon", "Central Luzon", 12.42, 0.14, 0.70, 0.75),
    ("Luzon", "Ilocos Region", 5.30, 0.08, 0.45, 0.60),
    ("Luzon", "Cagayan Valley", 3.68, 0.07, 0.40, 0.55),
    ("Luzon", "Cordillera Administrative Region (CAR)", 1.80, 0.06, 0.35, 0.50),
    ("Luzon", "MIMAROPA", 3.23, 0.065, 0.30, 0.45),
    ("Luzon", "Bicol Region", 5.80, 0.075, 0.45, 0.55),
    ("Visayas", "Western Visayas", 7.95, 0.11, 0.60, 0.70),
    ("Visayas", "Central Visayas", 7.81, 0.12, 0.75, 0.75),
    ("Visayas", "Eastern Visayas", 4.55, 0.065, 0.40, 0.50),
    ("Mindanao", "Zamboanga Peninsula", 3.87, 0.055, 0.35, 0.40),
    ("Mindanao", "Northern Mindanao", 4.69, 0.085, 0.55, 0.60),
    ("Mindanao", "Davao Region", 5.24, 0.10, 0.65, 0.65),
    ("Mindanao", "SOCCSKSARGEN", 4.55, 0.07, 0.45, 0.50),
    ("Mindanao", "Caraga", 2.80, 0.05, 0.35, 0.45),
    ("Mindanao", "Bangsamoro Autonomous Region in Muslim Mindanao (BARMM)", 4.08, 0.04, 0.25, 0.30),
]

# (name, category, is_client_brand)
BRANDS = [
    ("Alaska", "Dairy", True),
    ("Oishi", "Snacks", True),
    ("Peerless", "Cleaning", True),
    ("Del Monte", "Food", True),
    ("Winston", "Tobacco", True),
    ("Camel", "Tobacco", True),
    ("Mevius", "Tobacco", True),
    ("More", "Tobacco", True),
    ("Nestlé", "Dairy", False),
    ("Bear Brand", "Dairy", False),
    ("Jack n Jill", "Snacks", False),
    ("Richeese", "Snacks", False),
    ("Surf", "Cleaning", False),
    ("Tide", "Cleaning", False),
    ("Dole", "Food", False),
    ("C2", "Beverages", False),
    ("Coca-Cola", "Beverages", False),
    ("Marlboro", "Tobacco", False),
    ("Philip Morris", "Tobacco", False),
]

# (name, brand, category, unit_price)
PRODUCTS = [
    ("Alaska Evaporated Milk 410ml", "Alaska", "Dairy", 25.50),
    ("Alaska Condensed Milk 387ml", "Alaska", "Dairy", 28.75),
    ("Alaska Powdered Milk 1kg", "Alaska", "Dairy", 450.00),
    ("Alaska Crema All Purpose Cream 250ml", "Alaska", "Dairy", 32.50),
    ("Alaska Fortified Powdered Milk 900g", "Alaska", "Dairy", 385.00),
    ("Oishi Prawn Crackers Original 60g", "Oishi", "Snacks", 15.00),
    ("Oishi Pillows Chocolate 38g", "Oishi", "Snacks", 12.50),
    ("Oishi Smart C+ Orange 180ml", "Oishi", "Beverages", 18.25),
    ("Oishi Marty's Cracklin' Chicharon 90g", "Oishi", "Snacks", 22.75),
    ("Oishi Potato Fries BBQ 50g", "Oishi", "Snacks", 14.00),
    ("Oishi Bread Pan Toasted Bread 200g", "Oishi", "Bakery", 35.50),
    ("Peerless Champion Detergent Powder 1kg", "Peerless", "Cleaning", 45.00),
    ("Peerless Suds Dishwashing Liquid 485ml", "Peerless", "Cleaning", 28.50),
    ("Peerless Fabric Conditioner 1L", "Peerless", "Cleaning", 42.00),
    ("Del Monte Pineapple Juice 1L", "Del Monte", "Beverages", 68.00),
    ("Del Monte Tomato Sauce 230g", "Del Monte", "Food", 22.75),
    ("Del Monte Fruit Cocktail 432g", "Del Monte", "Food", 85.50),
    ("Del Monte Corned Beef 175g", "Del Monte", "Food", 58.00),
    ("Del Monte Fresh Cut Green Beans 425g", "Del Monte", "Food", 45.25),
    ("Winston Red 20s", "Winston", "Tobacco", 95.00),
    ("Camel Filters 20s", "Camel", "Tobacco", 100.00),
    ("Mevius Original 20s", "Mevius", "Tobacco", 105.00),
    ("More Menthol 20s", "More", "Tobacco", 75.00),
    ("Bear Brand Sterilized Milk 300ml", "Bear Brand", "Dairy", 130.00),
    ("Nestlé All Purpose Cream 250ml", "Nestlé", "Dairy", 35.50),
    ("Jack n Jill Piattos Cheese 85g", "Jack n Jill", "Snacks", 25.50),
    ("Richeese Nabati Cheese Wafer 58g", "Richeese", "Snacks", 16.75),
    ("Surf Powder Detergent 1kg", "Surf", "Cleaning", 48.50),
    ("Tide Powder Detergent 1kg", "Tide", "Cleaning", 52.00),
    ("Dole Pineapple Juice 1L", "Dole", "Beverages", 72.00),
    ("C2 Green Tea Apple 230ml", "C2", "Beverages", 20.00),
    ("Coca-Cola Regular 330ml", "Coca-Cola", "Beverages", 18.00),
    ("Marlboro Red 20s", "Marlboro", "Tobacco", 120.00),
]

# Store slot -> (chain prefix, type, size); slots past the list are sari-sari stores
STORE_FORMATS = [
    ("SM", StoreType.SUPERMARKET, SizeTier.LARGE),
    ("SM", StoreType.SUPERMARKET, SizeTier.LARGE),
    ("Robinsons", StoreType.DEPARTMENT_STORE, SizeTier.MEDIUM),
    ("Robinsons", StoreType.DEPARTMENT_STORE, SizeTier.MEDIUM),
    ("7-Eleven", StoreType.CONVENIENCE_STORE, SizeTier.MEDIUM),
    ("7-Eleven", StoreType.CONVENIENCE_STORE, SizeTier.MEDIUM),
]

# store type -> (minutes low, minutes high, items low, items high, max quantity)
BASKET_PROFILES = {
    StoreType.SUPERMARKET: (5, 20, 2, 7, 5),
    StoreType.DEPARTMENT_STORE: (3, 15, 2, 5, 3),
    StoreType.CONVENIENCE_STORE: (1, 6, 1, 3, 2),
    StoreType.SARI_SARI: (1, 4, 1, 2, 2),
}

EMOTIONS = ["happy", "neutral", "satisfied", "neutral", "happy", "curious"]


@dataclass
class RetailDataset:
    """Generated tables as polars frames, keyed like the database"""
    regions: pl.DataFrame
    brands: pl.DataFrame
    products: pl.DataFrame
    stores: pl.DataFrame
    devices: pl.DataFrame
    transactions: pl.DataFrame
    line_items: pl.DataFrame

    def row_counts(self) -> Dict[str, int]:
        return {
            "regions": self.regions.height,
            "brands": self.brands.height,
            "products": self.products.height,
            "stores": self.stores.height,
            "devices": self.devices.height,
            "transactions": self.transactions.height,
            "line_items": self.line_items.height,
        }


class PhilippineRetailGenerator:
    """
    Generate a coherent retail dataset.

    Example:
        generator = PhilippineRetailGenerator(seed=42)
        dataset = generator.generate(n_stores=100, n_transactions=5000)
    """

    def __init__(
        self,
        seed: int = 42,
        as_of: Optional[datetime] = None,
        history_days: int = 180,
        active_device_rate: float = 0.95,
        returning_customer_rate: float = 0.3,
        substitution_rate: float = 0.12,
    ):
        self.rng = np.random.default_rng(seed)
        self.fake = Faker("en_PH")
        self.fake.seed_instance(seed)
        self.as_of = as_of or datetime.utcnow().replace(microsecond=0)
        self.history_days = history_days
        self.active_device_rate = active_device_rate
        self.returning_customer_rate = returning_customer_rate
        self.substitution_rate = substitution_rate

    # =========================================================================
    # REFERENCE TABLES
    # =========================================================================

    def regions(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "region_id": list(range(1, len(REGIONS) + 1)),
                "mega_region": [r[0] for r in REGIONS],
                "name": [r[1] for r in REGIONS],
                "population_millions": [r[2] for r in REGIONS],
                "economic_weight": [r[3] for r in REGIONS],
                "urban_penetration": [r[4] for r in REGIONS],
                "client_presence": [r[5] for r in REGIONS],
            }
        )

    def brands(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "brand_id": list(range(1, len(BRANDS) + 1)),
                "name": [b[0] for b in BRANDS],
                "category": [b[1] for b in BRANDS],
                "is_client_brand": [b[2] for b in BRANDS],
            }
        )

    def products(self, brands: pl.DataFrame) -> pl.DataFrame:
        brand_ids = dict(zip(brands["name"].to_list(), brands["brand_id"].to_list()))
        return pl.DataFrame(
            {
                "product_id": list(range(1, len(PRODUCTS) + 1)),
                "name": [p[0] for p in PRODUCTS],
                "brand_id": [brand_ids[p[1]] for p in PRODUCTS],
                "category": [p[2] for p in PRODUCTS],
                "unit_price": [p[3] for p in PRODUCTS],
                "is_fmcg": [True] * len(PRODUCTS),
            }
        )

    def stores(self, regions: pl.DataFrame, n_stores: int = 100) -> pl.DataFrame:
        """Stores per region proportional to economic weight (rounded up)."""
        rows = []
        store_id = 1
        total_weight = float(regions["economic_weight"].sum())
        for region in regions.iter_rows(named=True):
            target = max(1, math.ceil(n_stores * region["economic_weight"] / total_weight))
            for slot in range(target):
                if slot < len(STORE_FORMATS):
                    chain, store_type, size_tier = STORE_FORMATS[slot]
                    name = f"{chain} {self.fake.city()} Branch {slot + 1}"
                else:
                    store_type, size_tier = StoreType.SARI_SARI, SizeTier.SMALL
                    name = f"{self.fake.last_name()} Sari-Sari Store"
                rows.append({
                    "store_id": store_id,
                    "name": name,
                    "region_id": region["region_id"],
                    "store_type": store_type.value,
                    "size_tier": size_tier.value,
                })
                store_id += 1
        return pl.DataFrame(rows)

    def devices(self, stores: pl.DataFrame) -> pl.DataFrame:
        """One capture device per store; most active and recently seen."""
        n = stores.height
        active = self.rng.random(n) < self.active_device_rate
        seen_hours_ago = np.where(
            active,
            self.rng.uniform(0, 2, n),
            self.rng.uniform(24, 24 * 14, n),
        )
        return pl.DataFrame(
            {
                "device_id": [
                    f"Pi5-{sid:03d}-{self.fake.hexify('^^^^^^')}" for sid in stores["store_id"].to_list()
                ],
                "store_id": stores["store_id"].to_list(),
                "status": [
                    DeviceStatus.ACTIVE.value if a else DeviceStatus.MAINTENANCE.value for a in active
                ],
                "last_seen": [self.as_of - timedelta(hours=float(h)) for h in seen_hours_ago],
            }
        )

    # =========================================================================
    # FACTS
    # =========================================================================

    def _shopper_age(self) -> int:
        band = self.rng.random()
        if band < 0.15:
            return int(self.rng.integers(18, 30))
        if band < 0.45:
            return int(self.rng.integers(30, 45))
        if band < 0.75:
            return int(self.rng.integers(45, 60))
        return int(self.rng.integers(60, 75))

    def transactions(
        self,
        stores: pl.DataFrame,
        devices: pl.DataFrame,
        regions: pl.DataFrame,
        products: pl.DataFrame,
        brands: pl.DataFrame,
        n: int = 5000,
    ) -> Tuple[pl.DataFrame, pl.DataFrame]:
        """
        Generate n transactions and their line items.

        Timestamps skew towards recent days. total_amount is left at 0;
        it is recomputed from line items when loaded.
        """
        presence = dict(zip(regions["region_id"].to_list(), regions["client_presence"].to_list()))
        device_by_store = dict(zip(devices["store_id"].to_list(), devices["device_id"].to_list()))
        store_rows = stores.to_dicts()

        client_brand_ids = set(brands.filter(pl.col("is_client_brand"))["brand_id"].to_list())
        client_products = products.filter(pl.col("brand_id").is_in(list(client_brand_ids)))["product_id"].to_list()
        competitor_products = products.filter(~pl.col("brand_id").is_in(list(client_brand_ids)))["product_id"].to_list()

        # Returning customers draw from a bounded pool
        customer_pool = [str(uuid.UUID(int=int(self.rng.integers(0, 2**63)))) for _ in range(max(1, n // 8))]

        transactions = []
        items = []
        line_item_id = 1
        for _ in range(n):
            store = store_rows[int(self.rng.integers(0, len(store_rows)))]
            store_type = StoreType(store["store_type"])
            min_minutes, max_minutes, min_items, max_items, max_quantity = BASKET_PROFILES[store_type]
            region_presence = presence[store["region_id"]]

            days_ago = int((self.rng.random() ** 2) * self.history_days)
            transaction_ts = (
                self.as_of.replace(hour=6, minute=0, second=0)
                - timedelta(days=days_ago)
                + timedelta(seconds=int(self.rng.integers(0, 16 * 3600)))
            )
            if transaction_ts > self.as_of:
                transaction_ts -= timedelta(days=1)

            transaction_id = str(uuid.UUID(int=int(self.rng.integers(0, 2**63)) << 64 | int(self.rng.integers(0, 2**63))))
            transactions.append({
                "transaction_id": transaction_id,
                "store_id": store["store_id"],
                "device_id": device_by_store.get(store["store_id"]),
                "transaction_ts": transaction_ts,
                "customer_id": (
                    customer_pool[int(self.rng.integers(0, len(customer_pool)))]
                    if self.rng.random() < self.returning_customer_rate
                    else None
                ),
                "gender": "F" if self.rng.random() < 0.55 else "M",
                "age": self._shopper_age(),
                "emotion": EMOTIONS[int(self.rng.integers(0, len(EMOTIONS)))],
                "duration_seconds": int(self.rng.uniform(min_minutes, max_minutes) * 60),
                "is_attendant_influenced": bool(self.rng.random() < region_presence * 0.4),
                "substitution_occurred": bool(self.rng.random() < self.substitution_rate),
            })

            for _ in range(int(self.rng.integers(min_items, max_items + 1))):
                pool = client_products if self.rng.random() < region_presence else competitor_products
                items.append({
                    "line_item_id": line_item_id,
                    "transaction_id": transaction_id,
                    "product_id": pool[int(self.rng.integers(0, len(pool)))],
                    "quantity": int(self.rng.integers(1, max_quantity + 1)),
                })
                line_item_id += 1

        return pl.DataFrame(transactions), pl.DataFrame(items)

    def generate(self, n_stores: int = 100, n_transactions: int = 5000) -> RetailDataset:
        regions = self.regions()
        brands = self.brands()
        products = self.products(brands)
        stores = self.stores(regions, n_stores)
        devices = self.devices(stores)
        transactions, line_items = self.transactions(
            stores, devices, regions, products, brands, n=n_transactions
        )
        return RetailDataset(
            regions=regions.drop("client_presence"),
            brands=brands,
            products=products,
            stores=stores,
            devices=devices,
            transactions=transactions,
            line_items=line_items,
        )
