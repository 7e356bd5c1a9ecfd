import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from openaero.api.responses import ok
from openaero.db import get_session
from openaero.settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/system")
def system_health(session: Session = Depends(get_session)):
    """DB 연결과 주요 플래그 확인"""
    value = session.execute(text("SELECT 1")).scalar_one()
    return ok(
        {
            "database": value == 1,
            "environment": settings.environment,
            "bomDualWrite": settings.enable_bom_dual_write,
            "alipayConfigured": bool(settings.alipay_app_id and settings.alipay_private_key),
            "wechatConfigured": bool(settings.wechat_app_id and settings.wechat_mch_id and settings.wechat_pay_key),
        },
        "系统状态正常",
    )
