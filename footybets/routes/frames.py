"""Frame endpoint: one POST per button press, answered with the next screen as JSON."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from footybets.cache import MatchCache
from footybets.config import get_settings
from footybets.database import get_async_session
from footybets.etl.base import DataProvider
from footybets.frames import FrameContext, dispatch
from footybets.security import limiter
from footybets.state import get_gateway, get_match_cache

router = APIRouter(prefix="/frames", tags=["frames"])

logger = logging.getLogger(__name__)
settings = get_settings()


class FrameRequest(BaseModel):
    fid: int = Field(..., gt=0)
    display_name: str = ""
    pfp_url: Optional[str] = None
    button_index: int = Field(1, ge=1, le=4)
    state: dict[str, Any] = Field(default_factory=dict)
    input_text: Optional[str] = None


@router.post("/menu")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def frame_menu(
    request: Request,
    body: FrameRequest,
    session: AsyncSession = Depends(get_async_session),
    gateway: DataProvider = Depends(get_gateway),
    cache: MatchCache = Depends(get_match_cache),
):
    ctx = FrameContext(
        session=session,
        gateway=gateway,
        cache=cache,
        fid=body.fid,
        display_name=body.display_name or f"fid:{body.fid}",
        pfp_url=body.pfp_url,
        state=dict(body.state),
        input_text=body.input_text,
    )
    payload = await dispatch(ctx, body.button_index)
    return payload.to_dict()
