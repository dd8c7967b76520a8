"""v1 API router."""

from fastapi import APIRouter

from copytrade.api.v1.endpoints import admin_payments, files, payments, rate, running_strategies, strategies, wallet

router = APIRouter(prefix="/v1")
router.include_router(payments.router, prefix="/payments", tags=["v1-payments"])
router.include_router(admin_payments.router, prefix="/admin/payments", tags=["v1-admin-payments"])
router.include_router(files.upload_url_router, prefix="/upload-url", tags=["v1-files"])
router.include_router(files.router, prefix="/files", tags=["v1-files"])
router.include_router(rate.router, prefix="/rate", tags=["v1-rate"])
router.include_router(wallet.router, prefix="/wallet", tags=["v1-wallet"])
router.include_router(strategies.router, prefix="/strategies", tags=["v1-strategies"])
router.include_router(running_strategies.router, prefix="/running-strategies", tags=["v1-running-strategies"])
router.include_router(
    running_strategies.admin_router,
    prefix="/admin/running-strategies",
    tags=["v1-admin-running-strategies"],
)
