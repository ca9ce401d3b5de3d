from __future__ import annotations

import os

import pytest

# Set env before any statement_converter imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.statement_converter_test.db")
os.environ.setdefault("QUOTA_BACKEND", "sql")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("AI_API_KEY", "test-key")


@pytest.fixture(autouse=True)
def _reset_db_and_singletons():
    import statement_converter.models  # noqa: F401
    from statement_converter.core.db import engine
    from statement_converter.core.models import Base

    import statement_converter.modules.extraction.ai as ai_mod
    import statement_converter.modules.usage.store as store_mod

    store_mod._store = None
    ai_mod._extractor = None

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield

    store_mod._store = None
    ai_mod._extractor = None


class FakeClock:
    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubExtractor:
    """Extractor double that records calls and returns canned rows or raises."""

    def __init__(self, result=None, error: Exception | None = None):
        self.result = list(result or [])
        self.error = error
        self.calls: list[int] = []

    def extract(self, pdf_bytes: bytes):
        self.calls.append(len(pdf_bytes))
        if self.error is not None:
            raise self.error
        return list(self.result)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


SAMPLE_TRANSACTIONS = [
    {
        "date": "2024-01-15",
        "description": "GROCERY STORE",
        "debit": 45.5,
        "credit": None,
        "balance": 1234.5,
    },
    {
        "date": "2024-01-16",
        "description": 'Transfer "savings"',
        "debit": None,
        "credit": 200,
        "balance": 1434.5,
    },
]


@pytest.fixture
def sample_transactions() -> list[dict]:
    return [dict(t) for t in SAMPLE_TRANSACTIONS]


@pytest.fixture
def stub_extractor():
    return StubExtractor
