from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from statement_converter.modules.conversion.errors import (
    InvalidUploadError,
    NoTransactionsFoundError,
    UsageTrackingUnavailableError,
)
from statement_converter.modules.conversion.service import (
    ConversionService,
    UploadRequest,
    output_file_name,
    validate_upload,
)
from statement_converter.modules.usage.service import Identity
from statement_converter.modules.usage.store import (
    WINDOW_SECONDS,
    InMemoryQuotaStore,
    SqlQuotaStore,
)


def _upload(**overrides) -> UploadRequest:
    fields = {
        "filename": "statement.pdf",
        "content_type": "application/pdf",
        "body": b"%PDF-1.4",
        "output_format": "csv",
    }
    fields.update(overrides)
    return UploadRequest(**fields)


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("statement.pdf", "statement.csv"),
        ("Statement.PDF", "Statement.csv"),
        ("report.pdf.pdf", "report.pdf.csv"),
        ("C:\\Users\\me\\bank.pdf", "bank.csv"),
        ('evil"name.pdf', "evilname.csv"),
        (".pdf", "statement.csv"),
        (None, "statement.csv"),
        ("no-extension", "no-extension.csv"),
    ],
)
def test_output_file_name(filename, expected):
    assert output_file_name(filename, "csv") == expected


@pytest.mark.parametrize(
    ("overrides", "reason"),
    [
        ({"body": None}, "No file provided"),
        ({"body": b""}, "No file provided"),
        ({"content_type": None}, "Only PDF files are supported"),
        ({"content_type": "image/jpeg"}, "Only PDF files are supported"),
        ({"body": b"0" * (10 * 1024 * 1024 + 1)}, "File size must be less than 10MB"),
    ],
)
def test_validate_upload_rejections(overrides, reason):
    with pytest.raises(InvalidUploadError) as exc_info:
        validate_upload(_upload(**overrides), max_bytes=10 * 1024 * 1024)
    assert exc_info.value.error == reason
    assert exc_info.value.status_code == 400


def test_validate_upload_accepts_pdf_variants():
    validate_upload(_upload(content_type="application/x-pdf"), max_bytes=100)
    validate_upload(_upload(body=b"0" * 100), max_bytes=100)


def test_convert_returns_result_with_remaining_quota(clock, stub_extractor, sample_transactions):
    service = ConversionService(
        quota_store=InMemoryQuotaStore(clock=clock),
        extractor=stub_extractor(sample_transactions),
    )
    result = service.convert(identity=Identity.anonymous("192.0.2.1"), upload=_upload())

    assert result.transaction_count == 2
    assert result.remaining_quota == 2
    assert result.media_type == "text/csv"
    assert result.file_name == "statement.csv"


def test_empty_extraction_still_consumes_quota(clock, stub_extractor):
    store = InMemoryQuotaStore(clock=clock)
    identity = Identity.anonymous("192.0.2.1")
    service = ConversionService(quota_store=store, extractor=stub_extractor([]))

    with pytest.raises(NoTransactionsFoundError):
        service.convert(identity=identity, upload=_upload())
    assert store.peek(identifier_hash=identity.quota_key()) == 1


def test_unreachable_database_fails_closed(tmp_path, stub_extractor, sample_transactions):
    broken = create_engine(f"sqlite:///{tmp_path / 'missing-dir' / 'db.sqlite'}")
    extractor = stub_extractor(sample_transactions)
    service = ConversionService(
        quota_store=SqlQuotaStore(session_factory=sessionmaker(bind=broken)),
        extractor=extractor,
    )

    with pytest.raises(UsageTrackingUnavailableError) as exc_info:
        service.convert(identity=Identity.anonymous("192.0.2.1"), upload=_upload())
    assert exc_info.value.status_code == 503
    assert extractor.calls == []


def test_bootstrap_purges_expired_usage(monkeypatch, clock):
    import statement_converter.modules.usage.store as store_mod
    from statement_converter.bootstrap import bootstrap

    store = SqlQuotaStore(clock=clock)
    store.check_and_increment(identifier_hash="stale", daily_limit=3)
    clock.advance(WINDOW_SECONDS + 1)
    store.check_and_increment(identifier_hash="fresh", daily_limit=3)
    monkeypatch.setattr(store_mod, "_store", store)

    bootstrap()

    assert store.purge_expired() == 0
    assert store.peek(identifier_hash="fresh") == 1
