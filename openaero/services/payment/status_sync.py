"""
결제 상태 동기화

웹훅이 유실된 PENDING / PROCESSING 거래를 결제사에 직접 조회해 같은 완료/실패 경로로 반영합니다.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from openaero.exceptions import NotFoundError, PaymentGatewayError
from openaero.models import PaymentEventType, PaymentProvider, PaymentStatus, PaymentTransaction
from openaero.services.payment.alipay import AlipayClient, verify_payment_amount
from openaero.services.payment.webhook_service import (
    ALIPAY_CLOSED_REASON,
    ALIPAY_SUCCESS_STATUSES,
    TERMINAL_STATUSES,
    PaymentWebhookService,
)
from openaero.services.payment.wechat import WechatPayClient, verify_wechat_payment_amount
from openaero.settings import settings

logger = logging.getLogger(__name__)

WECHAT_FAILED_STATES = ("CLOSED", "REVOKED", "PAYERROR")


class PaymentStatusSyncService:
    def __init__(
        self,
        db: Session,
        alipay_client: Optional[AlipayClient] = None,
        wechat_client: Optional[WechatPayClient] = None,
        webhook_service: Optional[PaymentWebhookService] = None,
    ):
        self.db = db
        self.alipay = alipay_client or AlipayClient()
        self.wechat = wechat_client or WechatPayClient()
        self.webhooks = webhook_service or PaymentWebhookService(db)

    def _result(self, tx: PaymentTransaction, previous: str, message: str) -> Dict[str, Any]:
        return {
            "transactionId": str(tx.id),
            "provider": tx.provider,
            "previousStatus": previous,
            "status": tx.status,
            "changed": previous != tx.status,
            "message": message,
        }

    def sync_transaction(self, transaction_id: uuid.UUID) -> Dict[str, Any]:
        """
        단건 동기화

        Raises:
            NotFoundError: 거래 없음
            PaymentGatewayError: 결제사 조회 실패 (재시도 소진 포함)
        """
        tx = self.db.get(PaymentTransaction, transaction_id, with_for_update=True)
        if tx is None:
            raise NotFoundError("支付记录不存在", context={"transaction_id": str(transaction_id)})

        previous = tx.status
        if tx.status in TERMINAL_STATUSES:
            return self._result(tx, previous, "이미 종결된 거래")

        if tx.provider == PaymentProvider.ALIPAY.value:
            message = self._sync_alipay(tx)
        elif tx.provider == PaymentProvider.WECHAT.value:
            message = self._sync_wechat(tx)
        else:
            raise PaymentGatewayError(f"지원하지 않는 결제사: {tx.provider}", provider=tx.provider, recoverable=False)

        self.webhooks.record_event(
            tx.provider, PaymentEventType.STATUS_SYNCED, True,
            f"{previous} -> {tx.status}: {message}", tx,
        )
        logger.info(f"결제 상태 동기화: tx={tx.id}, {previous} -> {tx.status} ({message})")
        return self._result(tx, previous, message)

    def _sync_alipay(self, tx: PaymentTransaction) -> str:
        provider = PaymentProvider.ALIPAY.value
        body = self.alipay.query_trade(tx.external_id)

        if body.get("code") != "10000":
            return f"조회 결과 없음: {body.get('sub_code') or body.get('code')}"

        trade_status = body.get("trade_status")
        if trade_status in ALIPAY_SUCCESS_STATUSES:
            if not verify_payment_amount(tx.amount, body.get("total_amount")):
                message = f"支付金额不匹配: 期望 {tx.amount}, 实际 {body.get('total_amount')}"
                self.webhooks.record_event(provider, PaymentEventType.AMOUNT_MISMATCH, False, message, tx, body)
                return message
            self.webhooks.complete_payment(tx, provider, body.get("trade_no"), trade_status, body)
            return trade_status
        if trade_status == "TRADE_CLOSED":
            self.webhooks.fail_payment(tx, provider, ALIPAY_CLOSED_REASON, trade_status, body)
            return trade_status

        if trade_status == "WAIT_BUYER_PAY" and tx.status == PaymentStatus.PENDING.value:
            tx.status = PaymentStatus.PROCESSING.value
        tx.external_status = trade_status
        return str(trade_status)

    def _sync_wechat(self, tx: PaymentTransaction) -> str:
        provider = PaymentProvider.WECHAT.value
        data = self.wechat.query_order(tx.external_id)

        if data.get("result_code") != "SUCCESS":
            return f"조회 결과 없음: {data.get('err_code') or data.get('result_code')}"

        trade_state = data.get("trade_state")
        if trade_state == "SUCCESS":
            if not verify_wechat_payment_amount(tx.amount, data.get("total_fee")):
                message = f"支付金额不匹配: 期望 {tx.amount} 元, 实际 {data.get('total_fee')} 分"
                self.webhooks.record_event(provider, PaymentEventType.AMOUNT_MISMATCH, False, message, tx, data)
                return message
            self.webhooks.complete_payment(tx, provider, data.get("transaction_id"), trade_state, data)
            return trade_state
        if trade_state in WECHAT_FAILED_STATES:
            reason = data.get("trade_state_desc") or f"支付失败: {trade_state}"
            self.webhooks.fail_payment(tx, provider, reason, trade_state, data)
            return trade_state

        if trade_state == "USERPAYING" and tx.status == PaymentStatus.PENDING.value:
            tx.status = PaymentStatus.PROCESSING.value
        tx.external_status = trade_state
        return str(trade_state)

    def sync_pending(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """PENDING / PROCESSING 거래 일괄 동기화. 결제사 오류는 건별로 집계"""
        stmt = (
            select(PaymentTransaction.id)
            .where(PaymentTransaction.status.in_([PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value]))
            .order_by(PaymentTransaction.created_at, PaymentTransaction.id)
            .limit(limit or settings.payment_sync_batch_size)
        )
        ids = list(self.db.scalars(stmt).all())

        summary: Dict[str, Any] = {"processed": 0, "changed": 0, "failed": 0, "errors": []}
        for tx_id in ids:
            summary["processed"] += 1
            try:
                result = self.sync_transaction(tx_id)
            except PaymentGatewayError as e:
                summary["failed"] += 1
                summary["errors"].append({"transactionId": str(tx_id), "error": e.message})
                logger.warning(f"결제 상태 동기화 실패: tx={tx_id}: {e.message}")
                continue
            if result["changed"]:
                summary["changed"] += 1

        logger.info(
            f"결제 상태 일괄 동기화: processed={summary['processed']}, "
            f"changed={summary['changed']}, failed={summary['failed']}"
        )
        return summary
