"""
결제 웹훅 / 상태 동기화 API
"""
import json
import logging
import uuid
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from openaero.api.responses import ok
from openaero.auth import AuthUser, require_admin
from openaero.db import get_session
from openaero.exceptions import OpenAeroError, WebhookProcessingError
from openaero.models import PaymentProvider
from openaero.services.payment.status_sync import PaymentStatusSyncService
from openaero.services.payment.webhook_service import PaymentWebhookService
from openaero.services.payment.wechat import parse_wechat_xml, wechat_response

router = APIRouter()
logger = logging.getLogger(__name__)

XML_MEDIA_TYPE = "application/xml"


def _parse_alipay_body(content_type: str, raw: bytes) -> dict:
    if "application/json" in content_type:
        data = json.loads(raw or b"{}")
        if not isinstance(data, dict):
            raise ValueError("JSON 본문은 객체여야 합니다.")
        return {str(k): "" if v is None else str(v) for k, v in data.items()}
    return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))


@router.post("/webhook/alipay")
async def alipay_webhook(request: Request, session: Session = Depends(get_session)):
    raw = await request.body()
    try:
        params = _parse_alipay_body(request.headers.get("content-type", ""), raw)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Alipay 통지 본문 파싱 실패: {e}")
        return JSONResponse({"success": False, "error": "请求格式错误", "code": "INVALID_BODY"}, status_code=400)

    try:
        result = await run_in_threadpool(PaymentWebhookService(session).handle_alipay, params)
    except OpenAeroError:
        raise
    except Exception as e:
        logger.exception("Alipay 통지 처리 중 오류")
        raise WebhookProcessingError(f"处理支付宝回调失败: {e}", provider=PaymentProvider.ALIPAY.value) from e

    return JSONResponse(result.to_dict(), status_code=result.http_status)


@router.post("/webhook/wechat")
async def wechat_webhook(request: Request, session: Session = Depends(get_session)):
    raw = await request.body()
    try:
        params = parse_wechat_xml(raw)
    except ValueError as e:
        logger.warning(f"WeChat 통지 XML 파싱 실패: {e}")
        return Response(wechat_response("FAIL", "回调数据错误"), status_code=400, media_type=XML_MEDIA_TYPE)

    try:
        result = await run_in_threadpool(PaymentWebhookService(session).handle_wechat, params)
    except Exception as e:
        logger.exception("WeChat 통지 처리 중 오류")
        raise WebhookProcessingError(f"处理失败: {e}", provider=PaymentProvider.WECHAT.value) from e

    if result.success:
        return Response(wechat_response("SUCCESS", "OK"), status_code=200, media_type=XML_MEDIA_TYPE)
    return Response(wechat_response("FAIL", result.message), status_code=result.http_status, media_type=XML_MEDIA_TYPE)


@router.post("/{transaction_id}/sync")
def sync_payment_status(
    transaction_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    result = PaymentStatusSyncService(session).sync_transaction(transaction_id)
    return ok(result, "支付状态已同步")
