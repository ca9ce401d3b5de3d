"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from statement_converter.modules.identity.models import User  # noqa: F401
from statement_converter.modules.usage.models import UsageRecord  # noqa: F401
