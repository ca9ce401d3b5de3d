from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

import statement_converter.models  # noqa: F401
from statement_converter.core.config import settings
from statement_converter.core.db import engine
from statement_converter.core.logging import get_logger, log_event, log_exception
from statement_converter.core.models import Base
from statement_converter.modules.usage.store import get_quota_store

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    # Expired windows are already ignored by the store; this only reclaims space.
    try:
        purged = get_quota_store().purge_expired()
    except SQLAlchemyError:
        log_exception(logger, "usage.purge.failure")
        return
    log_event(logger, "usage.purge.completed", purged=purged, backend=settings.quota_backend)
