"""
Synthetic Data Module
"""
from .generators import BRANDS, PRODUCTS, REGIONS, PhilippineRetailGenerator, RetailDataset
from .seed import execute_batch_insert, seed_database

__all__ = [
    "BRANDS",
    "PRODUCTS",
    "REGIONS",
    "PhilippineRetailGenerator",
    "RetailDataset",
    "execute_batch_insert",
    "seed_database",
]
