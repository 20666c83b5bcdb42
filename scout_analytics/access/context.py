"""
Caller identity passed explicitly through every read path.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from scout_analytics.database.models import AccessLevel


class Role(str, Enum):
    """Caller roles"""
    ADMIN = "admin"
    ANALYST = "analyst"
    STORE_MANAGER = "store_manager"


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; offset-aware values are converted first."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class StoreGrant:
    """A store grant as loaded for one request"""
    store_id: int
    access_level: AccessLevel = AccessLevel.READ
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_valid(self, now: datetime) -> bool:
        """Active and not expired at now; expiry is exclusive."""
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class CallerContext:
    """Who is asking, with which grants, at what time"""
    role: Role
    user_id: str
    store_grants: Tuple[StoreGrant, ...] = field(default_factory=tuple)
    now: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def valid_grants(self) -> Tuple[StoreGrant, ...]:
        return tuple(g for g in self.store_grants if g.is_valid(self.now))

    @property
    def granted_store_ids(self) -> FrozenSet[int]:
        return frozenset(g.store_id for g in self.valid_grants)

    def has_store_level(self, store_id: int, level: AccessLevel) -> bool:
        return any(g.store_id == store_id and g.access_level == level for g in self.valid_grants)

    @classmethod
    def system(cls, user_id: str = "system", now: Optional[datetime] = None) -> "CallerContext":
        """Admin context for scheduled jobs"""
        return cls(role=Role.ADMIN, user_id=user_id, now=now or datetime.utcnow())
