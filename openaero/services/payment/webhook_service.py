"""
결제 웹훅 대사(reconcile) 서비스

Alipay / WeChat 통지를 검증하고 결제 거래를 완료 또는 실패로 전이합니다.
업무상 거절(서명 오류, 금액 불일치 등)도 예외 대신 WebhookResult 로 돌려주어
감사 이벤트(payment_events)가 요청 트랜잭션과 함께 커밋되도록 합니다.

완료 처리는 거래 행 잠금 아래에서 현재 상태를 먼저 확인하며(멱등), 이미 종결된 거래의
재통지는 DUPLICATE_IGNORED 이벤트만 남기고 성공으로 응답합니다.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from openaero.models import (
    Order,
    OrderStatus,
    PaymentEvent,
    PaymentEventType,
    PaymentProvider,
    PaymentStatus,
    PaymentTransaction,
)
from openaero.services.payment.alipay import verify_alipay_signature, verify_payment_amount
from openaero.services.payment.wechat import verify_wechat_payment_amount, verify_wechat_signature
from openaero.services.revenue_service import RevenueService
from openaero.settings import settings

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (
    PaymentStatus.COMPLETED.value,
    PaymentStatus.FAILED.value,
    PaymentStatus.CANCELLED.value,
)

ALIPAY_SUCCESS_STATUSES = ("TRADE_SUCCESS", "TRADE_FINISHED")
ALIPAY_CLOSED_REASON = "支付被关闭"


@dataclass
class WebhookResult:
    success: bool
    http_status: int
    message: str
    code: str = "OK"
    transaction_id: Optional[uuid.UUID] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, transaction: Optional[PaymentTransaction] = None, **data: Any) -> "WebhookResult":
        return cls(True, 200, message, transaction_id=transaction.id if transaction else None, data=data)

    @classmethod
    def reject(cls, http_status: int, code: str, message: str,
               transaction: Optional[PaymentTransaction] = None) -> "WebhookResult":
        return cls(False, http_status, message, code=code, transaction_id=transaction.id if transaction else None)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            body = {"transactionId": str(self.transaction_id) if self.transaction_id else None}
            body.update(self.data)
            return {"success": True, "data": body, "message": self.message}
        return {"success": False, "error": self.message, "code": self.code}


def _clean_payload(params: Mapping[str, Any]) -> Dict[str, Any]:
    return {str(k): v if isinstance(v, (str, int, float, bool)) or v is None else str(v) for k, v in params.items()}


class PaymentWebhookService:
    def __init__(
        self,
        db: Session,
        revenue_service: Optional[RevenueService] = None,
        alipay_public_key: Optional[str] = None,
        wechat_api_key: Optional[str] = None,
    ):
        self.db = db
        self.revenue_service = revenue_service or RevenueService(db)
        self.alipay_public_key = alipay_public_key if alipay_public_key is not None else settings.alipay_public_key
        self.wechat_api_key = wechat_api_key if wechat_api_key is not None else settings.wechat_pay_key

    # ----- 공통 -----

    def _lock_transaction(self, external_id: str) -> Optional[PaymentTransaction]:
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.external_id == external_id)
            .with_for_update()
        )
        return self.db.scalars(stmt).first()

    def record_event(
        self,
        provider: str,
        event_type: PaymentEventType,
        success: bool,
        message: str,
        transaction: Optional[PaymentTransaction] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> PaymentEvent:
        event = PaymentEvent(
            transaction_id=transaction.id if transaction else None,
            provider=provider,
            event_type=event_type.value,
            status="SUCCESS" if success else "FAILED",
            message=message,
            payload=_clean_payload(payload) if payload is not None else None,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def complete_payment(
        self,
        transaction: PaymentTransaction,
        provider: str,
        external_transaction_id: Optional[str],
        external_status: Optional[str],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> WebhookResult:
        """
        결제 완료 처리 (잠금된 거래 기준)

        이미 종결된 거래면 부수효과 없이 DUPLICATE_IGNORED 만 기록합니다.
        """
        if transaction.status in TERMINAL_STATUSES:
            self.record_event(
                provider, PaymentEventType.DUPLICATE_IGNORED, True,
                f"이미 {transaction.status} 상태인 거래의 재통지", transaction, payload,
            )
            logger.info(f"중복 결제 통지 무시: tx={transaction.id}, status={transaction.status}")
            return WebhookResult.ok("重复通知已忽略", transaction, duplicate=True, status=transaction.status)

        now = datetime.now(timezone.utc)
        transaction.status = PaymentStatus.COMPLETED.value
        transaction.paid_at = now
        transaction.external_status = external_status
        if external_transaction_id:
            transaction.external_transaction_id = external_transaction_id
        transaction.failure_reason = None

        order = self.db.get(Order, transaction.order_id, with_for_update=True)
        if order is not None:
            order.status = OrderStatus.CONFIRMED.value

        self.record_event(
            provider, PaymentEventType.PAYMENT_COMPLETED, True,
            f"결제 완료: {external_status}", transaction, payload,
        )
        self.db.flush()

        self.revenue_service.process_revenue_share(transaction.order_id, transaction.id)

        logger.info(
            f"결제 완료 처리: tx={transaction.id}, order={transaction.order_id}, "
            f"provider={provider}, external={external_transaction_id}"
        )
        return WebhookResult.ok("支付成功处理", transaction, duplicate=False, status=transaction.status)

    def fail_payment(
        self,
        transaction: PaymentTransaction,
        provider: str,
        reason: str,
        external_status: Optional[str],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> WebhookResult:
        if transaction.status in TERMINAL_STATUSES:
            self.record_event(
                provider, PaymentEventType.DUPLICATE_IGNORED, True,
                f"이미 {transaction.status} 상태인 거래의 실패 통지", transaction, payload,
            )
            return WebhookResult.ok("重复通知已忽略", transaction, duplicate=True, status=transaction.status)

        transaction.status = PaymentStatus.FAILED.value
        transaction.failure_reason = reason
        transaction.external_status = external_status

        self.record_event(provider, PaymentEventType.PAYMENT_FAILED, True, reason, transaction, payload)
        self.db.flush()
        logger.info(f"결제 실패 처리: tx={transaction.id}, provider={provider}, reason={reason}")
        return WebhookResult.ok("支付失败已记录", transaction, duplicate=False, status=transaction.status)

    # ----- Alipay -----

    def handle_alipay(self, params: Mapping[str, Any]) -> WebhookResult:
        provider = PaymentProvider.ALIPAY.value
        sign = params.get("sign")
        out_trade_no = params.get("out_trade_no")
        trade_status = params.get("trade_status")

        if not sign:
            logger.warning("Alipay 통지 거절: 서명 없음")
            return WebhookResult.reject(400, "MISSING_SIGNATURE", "缺少签名")
        if not out_trade_no:
            logger.warning("Alipay 통지 거절: out_trade_no 없음")
            return WebhookResult.reject(400, "MISSING_OUT_TRADE_NO", "缺少外部订单号")

        transaction = self._lock_transaction(out_trade_no)
        if transaction is None:
            logger.warning(f"Alipay 통지 거절: 거래 없음 out_trade_no={out_trade_no}")
            return WebhookResult.reject(404, "TRANSACTION_NOT_FOUND", "支付记录不存在")

        self.record_event(provider, PaymentEventType.WEBHOOK_RECEIVED, True,
                          f"trade_status={trade_status}", transaction, params)

        if not verify_alipay_signature(params, sign, self.alipay_public_key):
            self.record_event(provider, PaymentEventType.SIGNATURE_INVALID, False,
                              "签名验证失败", transaction, params)
            logger.warning(f"Alipay 서명 검증 실패: tx={transaction.id}")
            return WebhookResult.reject(400, "SIGNATURE_INVALID", "签名验证失败", transaction)

        if trade_status in ALIPAY_SUCCESS_STATUSES:
            reported = params.get("total_amount")
            if not verify_payment_amount(transaction.amount, reported):
                message = f"支付金额不匹配: 期望 {transaction.amount}, 实际 {reported}"
                self.record_event(provider, PaymentEventType.AMOUNT_MISMATCH, False, message, transaction, params)
                logger.warning(f"Alipay 금액 불일치: tx={transaction.id}, stored={transaction.amount}, reported={reported}")
                return WebhookResult.reject(400, "AMOUNT_MISMATCH", message, transaction)

            return self.complete_payment(transaction, provider, params.get("trade_no"), trade_status, params)

        if trade_status == "TRADE_CLOSED":
            return self.fail_payment(transaction, provider, ALIPAY_CLOSED_REASON, trade_status, params)

        # WAIT_BUYER_PAY 등: 이벤트만 기록
        logger.info(f"Alipay 통지 기록만: tx={transaction.id}, trade_status={trade_status}")
        return WebhookResult.ok("通知已记录", transaction, duplicate=False, status=transaction.status)

    # ----- WeChat -----

    def handle_wechat(self, params: Mapping[str, Any]) -> WebhookResult:
        provider = PaymentProvider.WECHAT.value

        if params.get("return_code") != "SUCCESS":
            logger.warning(f"WeChat 통지 거절: return_code={params.get('return_code')}, msg={params.get('return_msg')}")
            return WebhookResult.reject(400, "INVALID_CALLBACK", "回调数据错误")

        sign = params.get("sign")
        if not sign:
            return WebhookResult.reject(400, "MISSING_SIGNATURE", "缺少签名")

        out_trade_no = params.get("out_trade_no")
        if not out_trade_no:
            return WebhookResult.reject(400, "MISSING_OUT_TRADE_NO", "缺少外部订单号")

        transaction = self._lock_transaction(out_trade_no)
        if transaction is None:
            logger.warning(f"WeChat 통지 거절: 거래 없음 out_trade_no={out_trade_no}")
            return WebhookResult.reject(404, "TRANSACTION_NOT_FOUND", "支付记录不存在")

        result_code = params.get("result_code")
        self.record_event(provider, PaymentEventType.WEBHOOK_RECEIVED, True,
                          f"result_code={result_code}", transaction, params)

        if not verify_wechat_signature(params, sign, self.wechat_api_key):
            self.record_event(provider, PaymentEventType.SIGNATURE_INVALID, False,
                              "签名验证失败", transaction, params)
            logger.warning(f"WeChat 서명 검증 실패: tx={transaction.id}")
            return WebhookResult.reject(400, "SIGNATURE_INVALID", "签名验证失败", transaction)

        if result_code == "SUCCESS":
            total_fee = params.get("total_fee")
            if not verify_wechat_payment_amount(transaction.amount, total_fee):
                message = f"支付金额不匹配: 期望 {transaction.amount} 元, 实际 {total_fee} 分"
                self.record_event(provider, PaymentEventType.AMOUNT_MISMATCH, False, message, transaction, params)
                logger.warning(f"WeChat 금액 불일치: tx={transaction.id}, stored={transaction.amount}, total_fee={total_fee}")
                return WebhookResult.reject(400, "AMOUNT_MISMATCH", message, transaction)

            return self.complete_payment(transaction, provider, params.get("transaction_id"), result_code, params)

        reason = params.get("err_code_des") or params.get("err_code") or "支付失败"
        return self.fail_payment(transaction, provider, reason, result_code, params)
