from __future__ import annotations

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from statement_converter.core.models import Base, Timestamped


class UsageRecord(Timestamped, Base):
    """Daily conversion counter for one hashed identity.

    ``identifier_hash`` is an HMAC digest; raw addresses and user ids are never stored.
    A record whose ``reset_at_ms`` has passed counts as absent.
    """

    __tablename__ = "usage_record"

    identifier_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    reset_at_ms: Mapped[int] = mapped_column(BigInteger, index=True)
