"""
수익 분배 서비스

결제 완료 후 주문 라인별로 플랫폼 수수료와 크리에이터 몫을 나눠 revenue_shares 에 기록하고,
크리에이터 누적 수익(creator_profiles.revenue)에 더합니다.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from openaero.exceptions import BusinessRuleError, NotFoundError
from openaero.models import CreatorProfile, Order, PaymentTransaction, RevenueShare, RevenueShareStatus
from openaero.settings import settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def revenue_share_to_api(share: RevenueShare) -> Dict[str, Any]:
    return {
        "id": str(share.id),
        "orderId": str(share.order_id),
        "solutionId": str(share.solution_id),
        "creatorId": str(share.creator_id),
        "transactionId": str(share.transaction_id) if share.transaction_id else None,
        "totalAmount": float(share.total_amount),
        "platformFee": float(share.platform_fee),
        "creatorRevenue": float(share.creator_revenue),
        "status": share.status,
        "settledAt": share.settled_at.isoformat() if share.settled_at else None,
    }


class RevenueService:
    def __init__(self, db: Session, platform_fee_rate: Optional[float] = None):
        self.db = db
        rate = settings.platform_fee_rate if platform_fee_rate is None else platform_fee_rate
        self.platform_fee_rate = Decimal(str(rate))

    def split(self, amount: Decimal) -> tuple[Decimal, Decimal]:
        """(플랫폼 수수료, 크리에이터 몫). 반올림 오차는 크리에이터 몫에 반영"""
        amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
        fee = (amount * self.platform_fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        return fee, amount - fee

    def process_revenue_share(self, order_id: uuid.UUID, transaction_id: uuid.UUID) -> List[RevenueShare]:
        """
        결제 완료 주문의 수익 분배

        이미 분배된 주문이면 기존 기록을 그대로 돌려줍니다 (재호출 안전).
        """
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"订单不存在: {order_id}")

        transaction = self.db.get(PaymentTransaction, transaction_id)
        if transaction is None or transaction.order_id != order.id:
            raise NotFoundError(f"支付记录不存在: {transaction_id}")

        existing = self.db.scalars(select(RevenueShare).where(RevenueShare.order_id == order.id)).all()
        if existing:
            logger.info(f"수익 분배 이미 존재, 건너뜀: order={order_id}, shares={len(existing)}")
            return list(existing)

        shares: List[RevenueShare] = []
        per_creator: Dict[uuid.UUID, Decimal] = defaultdict(Decimal)

        for line in order.lines:
            total = Decimal(line.price) * (line.quantity or 1)
            fee, creator_revenue = self.split(total)
            creator_id = line.solution.creator_id

            share = RevenueShare(
                order_id=order.id,
                solution_id=line.solution_id,
                creator_id=creator_id,
                transaction_id=transaction.id,
                total_amount=total.quantize(CENT),
                platform_fee=fee,
                creator_revenue=creator_revenue,
                status=RevenueShareStatus.PENDING.value,
            )
            self.db.add(share)
            shares.append(share)
            per_creator[creator_id] += creator_revenue

        for creator_id, amount in per_creator.items():
            self.update_creator_revenue(creator_id, amount)

        self.db.flush()
        logger.info(
            f"수익 분배 완료: order={order_id}, transaction={transaction_id}, "
            f"shares={len(shares)}, creators={len(per_creator)}"
        )
        return shares

    def update_creator_revenue(self, creator_id: uuid.UUID, amount: Decimal) -> CreatorProfile:
        creator = self.db.get(CreatorProfile, creator_id, with_for_update=True)
        if creator is None:
            raise NotFoundError(f"创作者不存在: {creator_id}")

        old = Decimal(creator.revenue or 0)
        creator.revenue = old + amount
        logger.info(f"크리에이터 수익 갱신: creator={creator_id}, {old} -> {creator.revenue} (+{amount})")
        return creator

    def settle_revenue(self, revenue_share_id: uuid.UUID) -> RevenueShare:
        """PENDING -> AVAILABLE (출금 가능)"""
        share = self.db.get(RevenueShare, revenue_share_id, with_for_update=True)
        if share is None:
            raise NotFoundError(f"收益分成记录不存在: {revenue_share_id}")
        if share.status != RevenueShareStatus.PENDING.value:
            raise BusinessRuleError(f"收益分成状态不允许结算: {share.status}")

        share.status = RevenueShareStatus.AVAILABLE.value
        share.settled_at = datetime.now(timezone.utc)
        self.db.flush()
        logger.info(f"수익 정산: share={revenue_share_id}, creator={share.creator_id}, amount={share.creator_revenue}")
        return share

    def get_creator_revenue_stats(self, creator_id: uuid.UUID) -> Dict[str, Any]:
        shares = self.db.scalars(
            select(RevenueShare)
            .where(RevenueShare.creator_id == creator_id)
            .order_by(RevenueShare.created_at.desc(), RevenueShare.id)
        ).all()

        def total(status: Optional[str] = None) -> float:
            return float(sum(
                (Decimal(s.creator_revenue) for s in shares if status is None or s.status == status),
                Decimal("0"),
            ))

        return {
            "revenueShares": [revenue_share_to_api(s) for s in shares],
            "stats": {
                "totalRevenue": total(),
                "pendingRevenue": total(RevenueShareStatus.PENDING.value),
                "availableRevenue": total(RevenueShareStatus.AVAILABLE.value),
                "withdrawnRevenue": total(RevenueShareStatus.WITHDRAWN.value),
            },
        }
