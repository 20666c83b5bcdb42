"""
Database Models - Retail Fact Store

This module defines the persisted state of the analytics pipeline:

Reference Data:
- Region: Philippine regions with macro-region grouping
- Brand: Brand catalog with client/competitor classification
- Product: Product catalog with pricing and FMCG flag
- Store / Device: Store network and deployed capture devices

Facts:
- Transaction: Observed shopper interactions
- LineItem: Products and quantities per transaction

Operational:
- Anomaly: Findings of the anomaly detector
- AuditEntry: Append-only mutation log
- StoreAccessGrant: Store-scoped access grants
- RefreshLogEntry / ViewVersion: Refresh history and published versions

Derived Views:
- Agg* tables: One table per published aggregate
"""

from datetime import datetime, date
from enum import Enum
from typing import Optional, List
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def enum_column(enum_cls) -> SQLEnum:
    """Store enum values (not member names) in a portable VARCHAR column."""
    return SQLEnum(
        enum_cls,
        values_callable=_enum_values,
        native_enum=False,
        length=40,
    )


Money = Numeric(14, 2, asdecimal=False)


# =============================================================================
# ENUMERATIONS
# =============================================================================

class StoreType(str, Enum):
    """Store format"""
    SUPERMARKET = "supermarket"
    DEPARTMENT_STORE = "department_store"
    CONVENIENCE_STORE = "convenience_store"
    SARI_SARI = "sari_sari"


class SizeTier(str, Enum):
    """Store size tier"""
    LARGE = "large"
    MEDIUM = "medium"
    SMALL = "small"


class DeviceStatus(str, Enum):
    """Capture device operational status"""
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


class BrandType(str, Enum):
    """Brand classification"""
    CLIENT = "client"
    COMPETITOR = "competitor"


class AccessLevel(str, Enum):
    """Store grant access level"""
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class AnomalyType(str, Enum):
    """Types of anomalies detected"""
    SUSPICIOUS_TRANSACTION = "suspicious_transaction"
    UNUSUAL_PATTERN = "unusual_pattern"
    HIGH_SUBSTITUTION_RATE = "high_substitution_rate"


class AnomalySeverity(str, Enum):
    """Severity levels for anomalies"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AnomalyStatus(str, Enum):
    """Anomaly lifecycle"""
    ACTIVE = "active"
    RESOLVED = "resolved"


class AuditAction(str, Enum):
    """Audited actions"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    GRANT_ACCESS = "GRANT_ACCESS"
    REVOKE_ACCESS = "REVOKE_ACCESS"
    GRANT_SWEEP = "GRANT_SWEEP"
    DETECTION_RUN = "DETECTION_RUN"
    PURGE_COMPLETE = "PURGE_COMPLETE"
    FMCG_FLAGGED = "FMCG_FLAGGED"


class RefreshStatus(str, Enum):
    """Outcome of a single view refresh"""
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


# =============================================================================
# REFERENCE DATA
# =============================================================================

class Region(Base):
    """
    Region Dimension

    Economic weight and population drive synthetic store placement only;
    no runtime aggregation reads them.
    """
    __tablename__ = "regions"

    region_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    mega_region: Mapped[str] = mapped_column(String(50), nullable=False)
    population_millions: Mapped[Optional[float]] = mapped_column(Float)
    economic_weight: Mapped[Optional[float]] = mapped_column(Float)
    urban_penetration: Mapped[Optional[float]] = mapped_column(Float)

    stores: Mapped[List["Store"]] = relationship(back_populates="region")

    __table_args__ = (
        Index("ix_regions_mega_region", "mega_region"),
    )


class Brand(Base):
    """Brand catalog. Client classification is a column, set once."""
    __tablename__ = "brands"

    brand_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    is_client_brand: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    products: Mapped[List["Product"]] = relationship(back_populates="brand")

    @property
    def brand_type(self) -> BrandType:
        return BrandType.CLIENT if self.is_client_brand else BrandType.COMPETITOR

    __table_args__ = (
        Index("ix_brands_category", "category"),
        Index("ix_brands_client", "is_client_brand"),
    )


class Product(Base):
    """
    Product Catalog

    Revenue is always computed from the current unit price; there is no
    point-in-time price history.
    """
    __tablename__ = "products"

    product_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    brand_id: Mapped[int] = mapped_column(Integer, ForeignKey("brands.brand_id"), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    unit_price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    is_fmcg: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    brand: Mapped["Brand"] = relationship(back_populates="products")

    __table_args__ = (
        Index("ix_products_brand", "brand_id"),
        Index("ix_products_category", "category"),
    )


class Store(Base):
    """Store network. Static after creation."""
    __tablename__ = "stores"

    store_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    region_id: Mapped[int] = mapped_column(Integer, ForeignKey("regions.region_id"), nullable=False)
    store_type: Mapped[StoreType] = mapped_column(enum_column(StoreType), nullable=False)
    size_tier: Mapped[SizeTier] = mapped_column(enum_column(SizeTier), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    region: Mapped["Region"] = relationship(back_populates="stores")
    devices: Mapped[List["Device"]] = relationship(back_populates="store")

    __table_args__ = (
        Index("ix_stores_region", "region_id"),
    )


class Device(Base):
    """Capture device deployed to exactly one store"""
    __tablename__ = "devices"

    device_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    store_id: Mapped[int] = mapped_column(Integer, ForeignKey("stores.store_id"), nullable=False)
    status: Mapped[DeviceStatus] = mapped_column(
        enum_column(DeviceStatus), default=DeviceStatus.ACTIVE, nullable=False
    )
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime)

    store: Mapped["Store"] = relationship(back_populates="devices")

    __table_args__ = (
        Index("ix_devices_store", "store_id"),
        Index("ix_devices_status", "status"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class Transaction(Base):
    """
    Transaction Fact Table

    One observed shopper interaction. total_amount is written only by
    recompute_transaction_totals and is never trusted from ingestion.
    """
    __tablename__ = "transactions"

    transaction_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    store_id: Mapped[int] = mapped_column(Integer, ForeignKey("stores.store_id"), nullable=False)
    device_id: Mapped[Optional[str]] = mapped_column(String(50), ForeignKey("devices.device_id"))
    transaction_ts: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Shopper demographics
    gender: Mapped[Optional[str]] = mapped_column(String(20))
    age: Mapped[Optional[int]] = mapped_column(Integer)
    emotion: Mapped[Optional[str]] = mapped_column(String(30))
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer)

    # Behavioral flags
    is_attendant_influenced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    substitution_occurred: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_fmcg: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    total_amount: Mapped[float] = mapped_column(Money, default=0.0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    items: Mapped[List["LineItem"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_transactions_ts", "transaction_ts"),
        Index("ix_transactions_store_ts", "store_id", "transaction_ts"),
        Index("ix_transactions_customer", "customer_id"),
    )


class LineItem(Base):
    """
    Line Item Fact Table

    product_id is validated during aggregation rather than by a foreign key
    so that dangling references surface as counted exclusions.
    """
    __tablename__ = "line_items"

    line_item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("transactions.transaction_id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped["Transaction"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_line_items_transaction", "transaction_id"),
        Index("ix_line_items_product", "product_id"),
    )


# =============================================================================
# OPERATIONAL TABLES
# =============================================================================

class Anomaly(Base):
    """
    Anomaly Findings

    anomaly_key (type:subject:window) identifies a finding across runs so a
    repeated detection updates its row instead of inserting a duplicate.
    """
    __tablename__ = "anomalies"

    anomaly_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    anomaly_key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    anomaly_type: Mapped[AnomalyType] = mapped_column(enum_column(AnomalyType), nullable=False)
    severity: Mapped[AnomalySeverity] = mapped_column(
        enum_column(AnomalySeverity), default=AnomalySeverity.MEDIUM, nullable=False
    )
    status: Mapped[AnomalyStatus] = mapped_column(
        enum_column(AnomalyStatus), default=AnomalyStatus.ACTIVE, nullable=False
    )
    store_id: Mapped[Optional[int]] = mapped_column(Integer)
    details: Mapped[dict] = mapped_column(JSONType, default=dict)
    detection_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    first_detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_anomalies_type_status", "anomaly_type", "status"),
        Index("ix_anomalies_store", "store_id"),
        Index("ix_anomalies_last_detected", "last_detected_at"),
    )


class AuditEntry(Base):
    """
    Audit Log

    Append-only. Rows leave only through the retention purge.
    """
    __tablename__ = "audit_log"

    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[AuditAction] = mapped_column(enum_column(AuditAction), nullable=False)
    record_id: Mapped[Optional[str]] = mapped_column(String(100))
    old_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    new_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    actor: Mapped[Optional[str]] = mapped_column(String(100))
    origin: Mapped[Optional[str]] = mapped_column(String(200))
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_log_table_action", "table_name", "action"),
        Index("ix_audit_log_recorded_at", "recorded_at"),
        Index("ix_audit_log_actor", "actor"),
    )


class StoreAccessGrant(Base):
    """Store-scoped access for a user. Revocation is a soft flag."""
    __tablename__ = "user_store_access"

    grant_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    store_id: Mapped[int] = mapped_column(Integer, ForeignKey("stores.store_id"), nullable=False)
    access_level: Mapped[AccessLevel] = mapped_column(
        enum_column(AccessLevel), default=AccessLevel.READ, nullable=False
    )
    granted_by: Mapped[Optional[str]] = mapped_column(String(100))
    granted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "store_id", name="uq_user_store_access"),
        Index("ix_user_store_access_user", "user_id", "is_active"),
    )


class RefreshLogEntry(Base):
    """One row per view per refresh run"""
    __tablename__ = "refresh_log"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(36), nullable=False)
    view_name: Mapped[str] = mapped_column(String(100), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[RefreshStatus] = mapped_column(enum_column(RefreshStatus), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    duration_ms: Mapped[Optional[float]] = mapped_column(Float)
    row_count: Mapped[Optional[int]] = mapped_column(Integer)
    excluded_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_refresh_log_run", "run_id"),
        Index("ix_refresh_log_view_started", "view_name", "started_at"),
    )


class ViewVersion(Base):
    """Latest published version of each derived view"""
    __tablename__ = "view_versions"

    view_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    as_of: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    refreshed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False)


# =============================================================================
# DERIVED VIEW TABLES
# =============================================================================

class AggDailySales(Base):
    """Daily sales rollup by store, day of week and hour"""
    __tablename__ = "agg_daily_sales"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    store_id: Mapped[int] = mapped_column(Integer, nullable=False)
    store_name: Mapped[str] = mapped_column(String(200), nullable=False)
    region_name: Mapped[str] = mapped_column(String(100), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sunday
    hour_of_day: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    avg_transaction_value: Mapped[float] = mapped_column(Money, nullable=False)
    influenced_transactions: Mapped[int] = mapped_column(Integer, nullable=False)
    substitution_transactions: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("sale_date", "store_id", "day_of_week", "hour_of_day", name="uq_agg_daily_sales_key"),
        Index("ix_agg_daily_sales_store", "store_id"),
    )


class AggHourlyPattern(Base):
    """Transactions by day of week and hour"""
    __tablename__ = "agg_hourly_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    hour_of_day: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    avg_transaction_value: Mapped[float] = mapped_column(Money, nullable=False)
    active_stores: Mapped[int] = mapped_column(Integer, nullable=False)
    influenced_transactions: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("day_of_week", "hour_of_day", name="uq_agg_hourly_patterns_key"),
    )


class AggProductPerformance(Base):
    """Product performance with global revenue share and category rank"""
    __tablename__ = "agg_product_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    brand_name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    is_fmcg: Mapped[bool] = mapped_column(Boolean, nullable=False)
    total_units_sold: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    market_share_percent: Mapped[float] = mapped_column(Float, nullable=False)
    category_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    first_sale_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_sale_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    daily_velocity: Mapped[Optional[float]] = mapped_column(Float)
    performance_tier: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        Index("ix_agg_product_category_rank", "category", "category_rank"),
    )


class AggRegionalPerformance(Base):
    """Regional performance with client brand share"""
    __tablename__ = "agg_regional_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    region_name: Mapped[str] = mapped_column(String(100), nullable=False)
    mega_region: Mapped[str] = mapped_column(String(50), nullable=False)
    store_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    avg_transaction_value: Mapped[float] = mapped_column(Money, nullable=False)
    unique_customers: Mapped[int] = mapped_column(Integer, nullable=False)
    revenue_per_store: Mapped[float] = mapped_column(Money, nullable=False)
    influence_rate_percent: Mapped[float] = mapped_column(Float, nullable=False)
    substitution_rate_percent: Mapped[float] = mapped_column(Float, nullable=False)
    client_brand_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    client_market_share_percent: Mapped[float] = mapped_column(Float, nullable=False)
    revenue_rank: Mapped[int] = mapped_column(Integer, nullable=False)


class AggRegionalClientBrand(Base):
    """Revenue of each client brand per region"""
    __tablename__ = "agg_regional_client_brands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_id: Mapped[int] = mapped_column(Integer, nullable=False)
    region_name: Mapped[str] = mapped_column(String(100), nullable=False)
    brand_id: Mapped[int] = mapped_column(Integer, nullable=False)
    brand_name: Mapped[str] = mapped_column(String(100), nullable=False)
    revenue: Mapped[float] = mapped_column(Money, nullable=False)
    share_of_region_percent: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("region_id", "brand_id", name="uq_agg_regional_client_brand"),
    )


class AggBrandCompetition(Base):
    """Brand share and market position within category"""
    __tablename__ = "agg_brand_competition"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    brand_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    brand_name: Mapped[str] = mapped_column(String(100), nullable=False)
    brand_category: Mapped[str] = mapped_column(String(100), nullable=False)
    brand_type: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_units: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    avg_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    regional_presence: Mapped[int] = mapped_column(Integer, nullable=False)
    store_presence: Mapped[int] = mapped_column(Integer, nullable=False)
    category_market_share_percent: Mapped[float] = mapped_column(Float, nullable=False)
    category_volume_share_percent: Mapped[float] = mapped_column(Float, nullable=False)
    revenue_rank_in_category: Mapped[int] = mapped_column(Integer, nullable=False)
    overall_revenue_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    market_position: Mapped[str] = mapped_column(String(20), nullable=False)


class AggCustomerSegment(Base):
    """RFM segmentation per identified customer"""
    __tablename__ = "agg_customer_segments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_spent: Mapped[float] = mapped_column(Money, nullable=False)
    avg_transaction_value: Mapped[float] = mapped_column(Money, nullable=False)
    first_transaction_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_transaction_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    lifetime_days: Mapped[int] = mapped_column(Integer, nullable=False)
    active_days: Mapped[int] = mapped_column(Integer, nullable=False)
    days_since_last: Mapped[int] = mapped_column(Integer, nullable=False)
    recency_segment: Mapped[str] = mapped_column(String(20), nullable=False)
    frequency_segment: Mapped[str] = mapped_column(String(20), nullable=False)
    monetary_segment: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_segment: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        Index("ix_agg_customer_segments_segment", "customer_segment"),
    )


class AggCategoryPerformance(Base):
    """Product category performance"""
    __tablename__ = "agg_category_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_units: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    avg_revenue_per_line: Mapped[float] = mapped_column(Money, nullable=False)
    product_count: Mapped[int] = mapped_column(Integer, nullable=False)
    brand_count: Mapped[int] = mapped_column(Integer, nullable=False)
    client_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    competitor_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    revenue_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    regional_presence: Mapped[int] = mapped_column(Integer, nullable=False)


class AggStorePerformance(Base):
    """Store performance and device health"""
    __tablename__ = "agg_store_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    store_name: Mapped[str] = mapped_column(String(200), nullable=False)
    region_name: Mapped[str] = mapped_column(String(100), nullable=False)
    store_type: Mapped[str] = mapped_column(String(40), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Money, nullable=False)
    avg_transaction_value: Mapped[float] = mapped_column(Money, nullable=False)
    influence_rate_percent: Mapped[float] = mapped_column(Float, nullable=False)
    substitution_rate_percent: Mapped[float] = mapped_column(Float, nullable=False)
    client_share_percent: Mapped[float] = mapped_column(Float, nullable=False)
    device_count: Mapped[int] = mapped_column(Integer, nullable=False)
    active_devices: Mapped[int] = mapped_column(Integer, nullable=False)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    performance_tier: Mapped[str] = mapped_column(String(20), nullable=False)
    device_alert: Mapped[bool] = mapped_column(Boolean, nullable=False)
    connectivity_alert: Mapped[bool] = mapped_column(Boolean, nullable=False)
