from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from statement_converter.core.config import settings
from statement_converter.core.logging import get_logger, log_event
from statement_converter.core.security import keyed_digest
from statement_converter.modules.usage.store import QuotaDecision, QuotaStore

logger = get_logger(__name__)

IdentityKind = Literal["anonymous", "authenticated"]


@dataclass(frozen=True)
class Identity:
    kind: IdentityKind
    subject: str

    @classmethod
    def anonymous(cls, network_address: str | None) -> Identity:
        return cls(kind="anonymous", subject=(network_address or "").strip() or "unknown")

    @classmethod
    def authenticated(cls, user_id: str) -> Identity:
        return cls(kind="authenticated", subject=user_id)

    @property
    def is_authenticated(self) -> bool:
        return self.kind == "authenticated"

    def quota_key(self, *, secret: str | None = None) -> str:
        # Kind prefix keeps an address and a user id from ever sharing a counter.
        return keyed_digest(f"{self.kind}:{self.subject}", secret=secret)


def daily_limit_for(identity: Identity) -> int:
    if identity.is_authenticated:
        return settings.authenticated_daily_limit
    return settings.anonymous_daily_limit


def admit(store: QuotaStore, identity: Identity) -> tuple[QuotaDecision, int]:
    """Charge one conversion to ``identity``. Store failures propagate to the caller."""
    limit = daily_limit_for(identity)
    decision = store.check_and_increment(
        identifier_hash=identity.quota_key(), daily_limit=limit
    )
    log_event(
        logger,
        "usage.allowed" if decision.allowed else "usage.denied",
        identity_kind=identity.kind,
        daily_limit=limit,
        remaining=decision.remaining,
    )
    return decision, limit
