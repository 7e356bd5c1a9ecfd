"""
창작자 수익 API
"""
import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from openaero.api.responses import ok
from openaero.auth import AuthUser, get_current_user, require_admin
from openaero.db import get_session
from openaero.exceptions import ForbiddenError
from openaero.services.revenue_service import RevenueService, revenue_share_to_api

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/creators/revenue")
def get_my_revenue(
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    if user.creator_profile_id is None:
        raise ForbiddenError("只有创作者可以查看收益")
    data = RevenueService(session).get_creator_revenue_stats(user.creator_profile_id)
    return ok(data, "获取收益统计成功")


@router.post("/admin/revenue/{share_id}/settle")
def settle_revenue_share(
    share_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    share = RevenueService(session).settle_revenue(share_id)
    logger.info(f"관리자 정산 처리: share={share_id}, by={admin.id}")
    return ok(revenue_share_to_api(share), "收益已结算")
