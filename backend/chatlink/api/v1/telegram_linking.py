"""Telegram account-linking endpoints.

Endpoints:
- POST /profile/telegram/generate-code: issue a code to send to the bot
- POST /profile/telegram/send-code: push a code to a named chat
- POST /profile/telegram/verify-code: complete a pushed-code link
- POST /profile/telegram/stop-polling: cancel the pending link attempt
- DELETE /profile/telegram: unlink the Telegram account
- GET /profile/telegram: linked identity and pending code
- GET /profile/telegram/bot-info: bot identity
"""

from datetime import datetime

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, ConfigDict, Field

from chatlink.api.deps import CurrentUserId, LinkingService
from chatlink.core.config import settings
from chatlink.core.rate_limiting import limiter
from chatlink.core.responses import DataResponse

router = APIRouter()


# ===================================================================
# Request / response models
# ===================================================================


class SendCodeRequest(BaseModel):
    """Request body for POST /profile/telegram/send-code."""

    model_config = ConfigDict(extra="forbid")

    telegram_identifier: str = Field(min_length=1, max_length=64)


class VerifyCodeRequest(BaseModel):
    """Request body for POST /profile/telegram/verify-code."""

    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1, max_length=32)


class GeneratedCodeResponse(BaseModel):
    code: str
    expires_at: datetime
    expires_in: int
    bot_username: str
    deep_link: str
    instructions: str


class SentCodeResponse(BaseModel):
    message: str
    expires_at: datetime
    expires_in: int


class TelegramStatusResponse(BaseModel):
    linked: bool
    telegram_id: str | None
    pending_code: str | None
    pending_expires_at: datetime | None


class BotInfoResponse(BaseModel):
    id: int
    username: str
    first_name: str


# ===================================================================
# Code issuing
# ===================================================================


@router.post("/generate-code")
@limiter.limit(settings.rate_limit_linking)
async def generate_linking_code(
    request: Request,  # noqa: ARG001
    user_id: CurrentUserId,
    service: LinkingService,
) -> DataResponse[GeneratedCodeResponse]:
    """Issue a linking code and start polling for it.

    Replaces any pending code of the caller. ``expires_in`` is in minutes.
    """
    issued = await service.initiate_linking(user_id)
    return DataResponse(
        data=GeneratedCodeResponse(
            code=issued.code,
            expires_at=issued.expires_at,
            expires_in=issued.expires_in_minutes,
            bot_username=issued.bot_username,
            deep_link=issued.deep_link,
            instructions=issued.instructions,
        )
    )


@router.post("/send-code")
@limiter.limit(settings.rate_limit_linking)
async def send_linking_code(
    request: Request,  # noqa: ARG001
    body: SendCodeRequest,
    user_id: CurrentUserId,
    service: LinkingService,
) -> DataResponse[SentCodeResponse]:
    """Push a verification code to the caller's Telegram chat."""
    pushed = await service.send_code(user_id, body.telegram_identifier)
    return DataResponse(
        data=SentCodeResponse(
            message=(
                "Verification code sent to your Telegram. "
                "Please check your messages."
            ),
            expires_at=pushed.expires_at,
            expires_in=pushed.expires_in_minutes,
        )
    )


@router.post("/verify-code")
@limiter.limit(settings.rate_limit_linking)
async def verify_linking_code(
    request: Request,  # noqa: ARG001
    body: VerifyCodeRequest,
    user_id: CurrentUserId,
    service: LinkingService,
) -> DataResponse[TelegramStatusResponse]:
    """Complete a pushed-code link with the code the caller typed."""
    user = await service.verify_code(user_id, body.code)
    return DataResponse(
        data=TelegramStatusResponse(
            linked=True,
            telegram_id=user.telegram_id,
            pending_code=None,
            pending_expires_at=None,
        )
    )


@router.post("/stop-polling", status_code=status.HTTP_204_NO_CONTENT)
async def stop_linking(
    user_id: CurrentUserId,
    service: LinkingService,
) -> None:
    """Cancel the caller's pending link attempt. Safe when there is none."""
    await service.cancel_linking(user_id)


# ===================================================================
# Linked identity
# ===================================================================


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_telegram(
    user_id: CurrentUserId,
    service: LinkingService,
) -> None:
    """Unlink the caller's Telegram account and cancel any pending code."""
    await service.unlink(user_id)


@router.get("")
async def get_telegram_status(
    user_id: CurrentUserId,
    service: LinkingService,
) -> DataResponse[TelegramStatusResponse]:
    """Return the caller's linked identity and pending code."""
    linking_status = await service.get_status(user_id)
    return DataResponse(
        data=TelegramStatusResponse(
            linked=linking_status.is_linked,
            telegram_id=linking_status.telegram_id,
            pending_code=linking_status.pending_code,
            pending_expires_at=linking_status.pending_expires_at,
        )
    )


@router.get("/bot-info")
async def get_bot_info(
    _user_id: CurrentUserId,
    service: LinkingService,
) -> DataResponse[BotInfoResponse]:
    """Return the bot identity from the Bot API."""
    info = await service.get_bot_info()
    return DataResponse(
        data=BotInfoResponse(
            id=info.id, username=info.username, first_name=info.first_name
        )
    )
