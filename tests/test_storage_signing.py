import time

import pytest

from copytrade.core.exceptions import PaymentValidationError, StorageUnavailableError
from copytrade.services import storage_service
from copytrade.services.storage_service import (
    check_content_type,
    ensure_file_owned_by_user,
    key_from_proof_url,
    new_proof_key,
    proof_exists,
    proof_url_for,
    safe_file_key,
    save_proof_stream,
    sign_upload_url,
    verify_signed_upload,
)


def test_sign_and_verify():
    key = new_proof_key(user_id=1, payment_id="abc123")
    url, exp = sign_upload_url(user_id=1, file_key=key, expires_in=300)
    assert url.startswith("/v1/files/upload/proofs/1/abc123/")

    sig = url.split("sig=")[-1]
    assert verify_signed_upload(user_id=1, file_key=key, exp=exp, sig=sig)
    assert not verify_signed_upload(user_id=2, file_key=key, exp=exp, sig=sig)
    assert not verify_signed_upload(user_id=1, file_key=key + "x", exp=exp, sig=sig)


def test_expired_signature_is_rejected():
    key = new_proof_key(user_id=1, payment_id="abc123")
    exp = int(time.time()) - 1
    sig = storage_service.make_signature(user_id=1, file_key=key, exp=exp)
    assert not verify_signed_upload(user_id=1, file_key=key, exp=exp, sig=sig)


def test_keys_are_scoped_to_owner():
    key = new_proof_key(user_id=7, payment_id="p1")
    assert ensure_file_owned_by_user(key, 7)
    assert not ensure_file_owned_by_user(key, 70)
    assert key_from_proof_url(proof_url_for(key)) == key
    assert key_from_proof_url("https://elsewhere.example/receipt.png") is None


def test_path_traversal_is_rejected():
    with pytest.raises(PaymentValidationError):
        safe_file_key("proofs/1/../../etc/passwd")
    with pytest.raises(PaymentValidationError):
        safe_file_key("   ")


def test_content_type_allow_list():
    assert check_content_type("image/PNG; charset=binary") == "image/png"
    with pytest.raises(PaymentValidationError):
        check_content_type("text/html")
    with pytest.raises(PaymentValidationError):
        check_content_type(None)


async def _chunks(*parts):
    for part in parts:
        yield part


async def test_save_proof_stream_writes_file():
    key = new_proof_key(user_id=3, payment_id="p3")
    stored, digest, size = await save_proof_stream(_chunks(b"abc", b"", b"def"), key)

    assert stored == key
    assert size == 6
    assert len(digest) == 64
    assert proof_exists(key)


async def test_save_proof_stream_rejects_empty_and_oversized(monkeypatch):
    key = new_proof_key(user_id=3, payment_id="p4")
    with pytest.raises(PaymentValidationError):
        await save_proof_stream(_chunks(b""), key)
    assert not proof_exists(key)

    monkeypatch.setattr(storage_service.settings, "MAX_PROOF_BYTES", 4)
    with pytest.raises(PaymentValidationError):
        await save_proof_stream(_chunks(b"abc", b"def"), key)
    assert not proof_exists(key)


async def test_save_proof_stream_when_storage_disabled(monkeypatch):
    monkeypatch.setattr(storage_service.settings, "STORAGE_ENABLED", False)
    with pytest.raises(StorageUnavailableError):
        await save_proof_stream(_chunks(b"abc"), new_proof_key(user_id=3, payment_id="p5"))
