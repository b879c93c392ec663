"""
tests/test_storage.py
Tests for the S3-backed receipt store with a mocked boto3 client.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from pybreaker import CircuitBreaker

from config.settings import settings
from shared.exceptions import ReceiptStoreFailure
from shared.utils.storage import S3ObjectStore, build_object_key


def _client_error():
    return ClientError({"Error": {"Code": "503", "Message": "Slow Down"}}, "PutObject")


def test_object_key_layout():
    key = build_object_key("mindwell_payments", "application/pdf")
    assert key.startswith("mindwell_payments/")
    assert key.endswith(".pdf")


@pytest.mark.asyncio
async def test_upload_puts_object_and_returns_url(monkeypatch):
    monkeypatch.setattr(settings, "S3_PUBLIC_BASE_URL", "https://receipts.example.com/")
    client = MagicMock()
    store = S3ObjectStore(client=client, bucket="receipts")

    stored = await store.upload(b"%PDF-1.4", "application/pdf", "mindwell_payments")

    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "receipts"
    assert kwargs["Key"] == stored.handle
    assert kwargs["ContentType"] == "application/pdf"
    assert stored.url == f"https://receipts.example.com/{stored.handle}"


@pytest.mark.asyncio
async def test_upload_error_becomes_store_failure():
    client = MagicMock()
    client.put_object.side_effect = _client_error()
    store = S3ObjectStore(client=client, bucket="receipts")

    with pytest.raises(ReceiptStoreFailure):
        await store.upload(b"data", "image/png", "mindwell_payments")


@pytest.mark.asyncio
async def test_open_circuit_fails_fast():
    client = MagicMock()
    client.put_object.side_effect = _client_error()
    store = S3ObjectStore(client=client, bucket="receipts", breaker=CircuitBreaker(fail_max=2, reset_timeout=60))

    for _ in range(2):
        with pytest.raises(ReceiptStoreFailure):
            await store.upload(b"data", "image/png", "mindwell_payments")
    calls = client.put_object.call_count

    with pytest.raises(ReceiptStoreFailure) as exc:
        await store.upload(b"data", "image/png", "mindwell_payments")
    assert exc.value.detail == "Receipt storage is temporarily unavailable"
    assert client.put_object.call_count == calls


@pytest.mark.asyncio
async def test_delete_removes_object():
    client = MagicMock()
    store = S3ObjectStore(client=client, bucket="receipts")
    await store.delete("mindwell_payments/r1.png")
    client.delete_object.assert_called_once_with(Bucket="receipts", Key="mindwell_payments/r1.png")
