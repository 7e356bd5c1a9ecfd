"""
솔루션 심사 상태 머신

PENDING_REVIEW 솔루션에 대해 심사를 시작하고(IN_PROGRESS), 결정(APPROVED / REJECTED /
NEEDS_REVISION)으로 완료합니다. 솔루션당 IN_PROGRESS 심사는 최대 1건이며,
솔루션 행 잠금(SELECT ... FOR UPDATE) 아래에서 검사합니다.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from openaero.exceptions import BusinessRuleError, ConflictError, NotFoundError, ValidationError
from openaero.models import ReviewDecision, ReviewStatus, Solution, SolutionReview, SolutionStatus, UserProfile

logger = logging.getLogger(__name__)

# 심사 결정 -> 솔루션 상태
DECISION_TO_STATUS = {
    ReviewDecision.APPROVED.value: SolutionStatus.APPROVED.value,
    ReviewDecision.REJECTED.value: SolutionStatus.REJECTED.value,
    ReviewDecision.NEEDS_REVISION.value: SolutionStatus.PENDING_REVIEW.value,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def as_utc(value: datetime) -> datetime:
    # SQLite 는 tz 정보 없이 돌려줌
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _reviewer_names(db: Session, reviewer_ids: List[uuid.UUID]) -> Dict[uuid.UUID, UserProfile]:
    if not reviewer_ids:
        return {}
    profiles = db.scalars(select(UserProfile).where(UserProfile.user_id.in_(set(reviewer_ids)))).all()
    return {p.user_id: p for p in profiles}


def serialize_review(review: SolutionReview, reviewer: Optional[UserProfile] = None) -> Dict[str, Any]:
    solution = review.solution
    return {
        "id": str(review.id),
        "solutionId": str(review.solution_id),
        "reviewerId": str(review.reviewer_id),
        "status": review.status,
        "decision": review.decision,
        "fromStatus": review.from_status,
        "toStatus": review.to_status,
        "score": review.score,
        "qualityScore": review.quality_score,
        "completeness": review.completeness,
        "innovation": review.innovation,
        "marketPotential": review.market_potential,
        "comments": review.comments,
        "decisionNotes": review.decision_notes,
        "suggestions": review.suggestions or [],
        "reviewStartedAt": _iso(review.review_started_at),
        "reviewedAt": _iso(review.reviewed_at),
        "solution": {
            "id": str(solution.id),
            "title": solution.title,
            "status": solution.status,
        } if solution else None,
        "reviewer": {
            "id": str(review.reviewer_id),
            "firstName": reviewer.first_name if reviewer else None,
            "lastName": reviewer.last_name if reviewer else None,
        },
    }


class SolutionReviewService:
    """
    심사 시작/완료/이력/통계

    커밋은 호출자(요청 세션)가 담당하고, 여기서는 flush 까지만 수행합니다.
    """

    def __init__(self, db: Session):
        self.db = db

    def _lock_solution(self, solution_id: uuid.UUID) -> Solution:
        solution = self.db.get(Solution, solution_id, with_for_update=True)
        if solution is None:
            raise NotFoundError("方案不存在", context={"solution_id": str(solution_id)})
        return solution

    def _in_progress_review(self, solution_id: uuid.UUID) -> Optional[SolutionReview]:
        stmt = (
            select(SolutionReview)
            .where(SolutionReview.solution_id == solution_id)
            .where(SolutionReview.status == ReviewStatus.IN_PROGRESS.value)
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def _new_review(self, solution: Solution, reviewer_id: uuid.UUID) -> SolutionReview:
        review = SolutionReview(
            solution_id=solution.id,
            reviewer_id=reviewer_id,
            status=ReviewStatus.IN_PROGRESS.value,
            decision=ReviewDecision.PENDING.value,
            from_status=solution.status,
            to_status=solution.status,
            review_started_at=datetime.now(timezone.utc),
        )
        review.solution = solution
        self.db.add(review)
        self.db.flush()
        return review

    def start_review(self, solution_id: uuid.UUID, reviewer_id: uuid.UUID) -> SolutionReview:
        """
        심사 시작 (심사자 배정)

        Raises:
            NotFoundError: 솔루션 없음
            BusinessRuleError: PENDING_REVIEW 가 아님
            ConflictError: 이미 진행 중인 심사가 있음
        """
        solution = self._lock_solution(solution_id)

        if solution.status != SolutionStatus.PENDING_REVIEW.value:
            raise BusinessRuleError(
                "只能审核待审核状态的方案",
                context={"solution_id": str(solution_id), "status": solution.status},
            )

        if self._in_progress_review(solution_id) is not None:
            raise ConflictError("该方案已有进行中的审核", context={"solution_id": str(solution_id)})

        review = self._new_review(solution, reviewer_id)
        logger.info(f"심사 시작: solution={solution_id}, reviewer={reviewer_id}, review={review.id}")
        return review

    def complete_review(
        self,
        solution_id: uuid.UUID,
        decision: str,
        review_id: Optional[uuid.UUID] = None,
        reviewer_id: Optional[uuid.UUID] = None,
        score: Optional[int] = None,
        quality_score: Optional[int] = None,
        completeness: Optional[int] = None,
        innovation: Optional[int] = None,
        market_potential: Optional[int] = None,
        comments: Optional[str] = None,
        decision_notes: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
    ) -> SolutionReview:
        """
        심사 완료

        review_id 가 없으면 진행 중인 심사를 찾고, 그것도 없으면 reviewer_id 로 새 심사를
        만든 뒤 곧바로 완료합니다. 심사 기록과 솔루션 상태는 같은 트랜잭션에서 갱신됩니다.
        """
        decision = getattr(decision, "value", decision)
        if decision not in DECISION_TO_STATUS:
            raise ValidationError(f"无效的审核决定: {decision}", field="decision")

        solution = self._lock_solution(solution_id)

        if review_id is not None:
            review = self.db.get(SolutionReview, review_id)
            if review is None or review.solution_id != solution.id:
                raise NotFoundError("审核记录不存在", context={"review_id": str(review_id)})
        else:
            review = self._in_progress_review(solution.id)

        if review is not None and review.status != ReviewStatus.IN_PROGRESS.value:
            raise ConflictError(
                "只能完成进行中的审核",
                context={"review_id": str(review.id), "status": review.status},
            )

        if solution.status != SolutionStatus.PENDING_REVIEW.value:
            raise BusinessRuleError(
                "只能审核待审核状态的方案",
                context={"solution_id": str(solution_id), "status": solution.status},
            )

        if review is None:
            if reviewer_id is None:
                raise ValidationError("未找到审核记录，请先开始审核或提供审核员ID", field="reviewerId")
            review = self._new_review(solution, reviewer_id)

        from_status = review.from_status or solution.status
        to_status = DECISION_TO_STATUS[decision]
        now = datetime.now(timezone.utc)

        review.status = ReviewStatus.COMPLETED.value
        review.decision = decision
        review.from_status = from_status
        review.to_status = to_status
        review.score = score
        review.quality_score = quality_score
        review.completeness = completeness
        review.innovation = innovation
        review.market_potential = market_potential
        review.comments = comments
        review.decision_notes = decision_notes
        review.suggestions = list(suggestions or [])
        review.reviewed_at = now

        solution.status = to_status
        solution.reviewed_at = now
        solution.review_notes = decision_notes or comments or None

        self.db.flush()
        logger.info(
            f"심사 완료: solution={solution_id}, review={review.id}, "
            f"decision={decision}, {from_status} -> {to_status}"
        )
        return review

    def to_dict(self, review: SolutionReview) -> Dict[str, Any]:
        profiles = _reviewer_names(self.db, [review.reviewer_id])
        return serialize_review(review, profiles.get(review.reviewer_id))

    def get_review_history(self, solution_id: uuid.UUID) -> List[Dict[str, Any]]:
        """솔루션의 심사 이력 (최신순, 심사자 이름 포함)"""
        stmt = (
            select(SolutionReview)
            .where(SolutionReview.solution_id == solution_id)
            .order_by(SolutionReview.created_at.desc(), SolutionReview.review_started_at.desc())
        )
        reviews = self.db.scalars(stmt).all()
        profiles = _reviewer_names(self.db, [r.reviewer_id for r in reviews])
        return [serialize_review(r, profiles.get(r.reviewer_id)) for r in reviews]

    def get_review_statistics(
        self,
        reviewer_id: Optional[uuid.UUID] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        stmt = select(SolutionReview)
        if reviewer_id is not None:
            stmt = stmt.where(SolutionReview.reviewer_id == reviewer_id)
        if start_date is not None:
            stmt = stmt.where(SolutionReview.created_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(SolutionReview.created_at <= end_date)

        reviews = self.db.scalars(stmt).all()

        def count(attr: str, value: str) -> int:
            return sum(1 for r in reviews if getattr(r, attr) == value)

        scores = [r.score for r in reviews if r.score is not None]
        durations = [
            (as_utc(r.reviewed_at) - as_utc(r.review_started_at)).total_seconds() / 3600
            for r in reviews
            if r.status == ReviewStatus.COMPLETED.value and r.reviewed_at and r.review_started_at
        ]

        return {
            "total": len(reviews),
            "pending": count("status", ReviewStatus.PENDING.value),
            "inProgress": count("status", ReviewStatus.IN_PROGRESS.value),
            "completed": count("status", ReviewStatus.COMPLETED.value),
            "approved": count("decision", ReviewDecision.APPROVED.value),
            "rejected": count("decision", ReviewDecision.REJECTED.value),
            "needsRevision": count("decision", ReviewDecision.NEEDS_REVISION.value),
            "averageScore": round(sum(scores) / len(scores), 2) if scores else 0,
            "averageReviewTime": round(sum(durations) / len(durations), 2) if durations else 0,
        }
