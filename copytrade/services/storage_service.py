"""Private local storage for payment proofs + signed upload URLs."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple
from urllib.parse import quote

from copytrade.config import get_settings
from copytrade.core.exceptions import PaymentValidationError, StorageUnavailableError

logger = logging.getLogger(__name__)
settings = get_settings()

PROOF_PREFIX = "proofs"
PROOF_URL_PREFIX = "/v1/files/"


def storage_enabled() -> bool:
    return bool(settings.STORAGE_ENABLED)


def get_storage_root() -> Path:
    root = Path(settings.STORAGE_ROOT)
    root.mkdir(parents=True, exist_ok=True)
    return root


def safe_file_key(file_key: str) -> str:
    normalized = file_key.strip().replace("\\", "/").lstrip("/")
    if not normalized or ".." in normalized:
        raise PaymentValidationError("Invalid file key")
    return normalized


def resolve_storage_path(file_key: str) -> Path:
    key = safe_file_key(file_key)
    root = get_storage_root().resolve()
    path = (root / key).resolve()
    if root not in path.parents:
        raise PaymentValidationError("Invalid file path")
    return path


def new_proof_key(user_id: int, payment_id: str) -> str:
    return f"{PROOF_PREFIX}/{user_id}/{safe_file_key(payment_id)}/{uuid.uuid4().hex}"


def ensure_file_owned_by_user(file_key: str, user_id: int) -> bool:
    return safe_file_key(file_key).startswith(f"{PROOF_PREFIX}/{user_id}/")


def proof_url_for(file_key: str) -> str:
    return f"{PROOF_URL_PREFIX}{quote(safe_file_key(file_key))}"


def key_from_proof_url(proof_url: str) -> Optional[str]:
    if not proof_url or not proof_url.startswith(PROOF_URL_PREFIX):
        return None
    return safe_file_key(proof_url[len(PROOF_URL_PREFIX):])


def make_signature(user_id: int, file_key: str, exp: int, action: str = "put") -> str:
    secret = settings.SIGNED_URL_SECRET.encode("utf-8")
    payload = f"{action}:{user_id}:{file_key}:{exp}".encode("utf-8")
    return hmac.new(secret, payload, hashlib.sha256).hexdigest()


def sign_upload_url(user_id: int, file_key: str, expires_in: Optional[int] = None) -> Tuple[str, int]:
    key = safe_file_key(file_key)
    exp = int(time.time()) + int(expires_in or settings.UPLOAD_URL_EXPIRE_SECONDS)
    sig = make_signature(user_id=user_id, file_key=key, exp=exp)
    url = f"/v1/files/upload/{quote(key)}?uid={user_id}&exp={exp}&sig={sig}"
    return url, exp


def verify_signed_upload(user_id: int, file_key: str, exp: int, sig: str) -> bool:
    if exp < int(time.time()):
        return False
    expected = make_signature(user_id=user_id, file_key=safe_file_key(file_key), exp=exp)
    return hmac.compare_digest(expected, sig)


def check_content_type(content_type: Optional[str]) -> str:
    value = (content_type or "").split(";")[0].strip().lower()
    if value not in settings.get_allowed_proof_types():
        raise PaymentValidationError(f"Unsupported proof file type '{value or 'unknown'}'")
    return value


async def save_proof_stream(chunks: AsyncIterator[bytes], file_key: str) -> Tuple[str, str, int]:
    """Write an upload body to storage. Returns (key, sha256, size)."""
    if not storage_enabled():
        raise StorageUnavailableError()

    path = resolve_storage_path(file_key)
    hasher = hashlib.sha256()
    size = 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            async for chunk in chunks:
                if not chunk:
                    continue
                size += len(chunk)
                if size > settings.MAX_PROOF_BYTES:
                    raise PaymentValidationError("Proof file is too large")
                f.write(chunk)
                hasher.update(chunk)
    except PaymentValidationError:
        path.unlink(missing_ok=True)
        raise
    except OSError as exc:
        logger.exception("Failed to store proof %s", file_key)
        path.unlink(missing_ok=True)
        raise StorageUnavailableError() from exc

    if size == 0:
        path.unlink(missing_ok=True)
        raise PaymentValidationError("Proof file is empty")
    return safe_file_key(file_key), hasher.hexdigest(), size


def proof_exists(file_key: str) -> bool:
    return resolve_storage_path(file_key).is_file()
