"""API v1 router aggregator.

All v1 endpoint routers are included here under the /api/v1 prefix.
"""

from fastapi import APIRouter

from chatlink.api.v1 import telegram_linking, telegram_webhook

router = APIRouter()

router.include_router(
    telegram_linking.router,
    prefix="/profile/telegram",
    tags=["telegram"],
)
router.include_router(
    telegram_webhook.router,
    prefix="/telegram",
    tags=["telegram"],
)
