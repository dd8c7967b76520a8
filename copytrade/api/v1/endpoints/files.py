"""v1 proof-of-payment upload URL, signed upload and owner/admin download."""

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from copytrade.core.dependencies import get_current_user, rate_limited
from copytrade.core.exceptions import (
    AuthorizationError,
    PaymentConflictError,
    PaymentNotFoundError,
)
from copytrade.database import get_db
from copytrade.models import User
from copytrade.schemas import UploadResponse, UploadUrlRequest, UploadUrlResponse
from copytrade.services.ledger_store import get_payment_for_user, is_admin
from copytrade.services.status import is_terminal
from copytrade.services.storage_service import (
    check_content_type,
    ensure_file_owned_by_user,
    new_proof_key,
    proof_url_for,
    resolve_storage_path,
    save_proof_stream,
    sign_upload_url,
    storage_enabled,
    verify_signed_upload,
)

logger = logging.getLogger(__name__)

upload_url_router = APIRouter()
router = APIRouter()


@upload_url_router.post("", response_model=UploadUrlResponse)
async def create_upload_url(
    payload: UploadUrlRequest,
    current_user: User = Depends(rate_limited("uploads", "RATE_LIMIT_UPLOADS_PER_MINUTE")),
    db: AsyncSession = Depends(get_db),
):
    intent = await get_payment_for_user(db, current_user, payload.transaction_id)
    if intent.user_id != current_user.id:
        raise PaymentNotFoundError()
    if is_terminal(intent.outcome):
        raise PaymentConflictError()
    check_content_type(payload.file_type)

    if not storage_enabled():
        logger.warning("Proof storage disabled; payment %s must use unverified proof mode", intent.id)
        return UploadUrlResponse(
            use_local_fallback=True,
            message="Proof storage is not configured",
        )

    key = new_proof_key(current_user.id, intent.id)
    url, exp = sign_upload_url(current_user.id, key)
    return UploadUrlResponse(signed_url=url, key=key, proof_url=proof_url_for(key), expires_at=exp)


@router.put("/upload/{file_key:path}", response_model=UploadResponse)
async def upload_file(
    file_key: str,
    request: Request,
    uid: int = Query(...),
    exp: int = Query(...),
    sig: str = Query(...),
):
    if not ensure_file_owned_by_user(file_key, uid):
        raise AuthorizationError("Invalid file ownership")
    if not verify_signed_upload(user_id=uid, file_key=file_key, exp=exp, sig=sig):
        raise AuthorizationError("Invalid or expired signature")
    check_content_type(request.headers.get("content-type"))

    key, digest, size = await save_proof_stream(request.stream(), file_key)
    logger.info("Stored proof %s (%d bytes)", key, size)
    return UploadResponse(key=key, sha256=digest, size=size)


@router.get("/{file_key:path}")
async def download_file(
    file_key: str,
    current_user: User = Depends(get_current_user),
):
    if not ensure_file_owned_by_user(file_key, current_user.id) and not is_admin(current_user):
        raise PaymentNotFoundError("File not found")

    path = resolve_storage_path(file_key)
    if not path.is_file():
        raise PaymentNotFoundError("File not found")

    return FileResponse(str(path), filename=path.name)
