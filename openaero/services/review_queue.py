"""
관리자 심사 대기열 조회
"""
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import Session

from openaero.models import CreatorProfile, ReviewStatus, Solution, SolutionReview, SolutionStatus, UserProfile
from openaero.services.solution_review import as_utc
from openaero.settings import settings

logger = logging.getLogger(__name__)


def _person(profile: Optional[UserProfile], fallback_id: Any) -> Optional[Dict[str, Any]]:
    if profile is None:
        return {"id": str(fallback_id), "name": None, "email": None} if fallback_id else None
    return {"id": str(profile.user_id), "name": profile.display_name, "email": profile.email}


class ReviewQueueService:
    def __init__(self, db: Session, overdue_days: Optional[int] = None):
        self.db = db
        self.overdue_days = overdue_days if overdue_days is not None else settings.review_overdue_days

    def _overdue_cutoff(self) -> datetime:
        return datetime.now(timezone.utc) - timedelta(days=self.overdue_days)

    def get_queue(
        self,
        status: str = "all",
        assigned_to: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "submitted",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        """
        PENDING_REVIEW 솔루션 목록 + 페이지 정보 + 대기열 통계

        status:
            all / pending(진행 중 심사 없음) / in_progress / overdue(제출 후 overdue_days 경과)
        """
        cutoff = self._overdue_cutoff()
        in_progress = exists().where(
            and_(
                SolutionReview.solution_id == Solution.id,
                SolutionReview.status == ReviewStatus.IN_PROGRESS.value,
            )
        )

        conditions = [Solution.status == SolutionStatus.PENDING_REVIEW.value]
        if status == "pending":
            conditions.append(~in_progress)
        elif status == "in_progress":
            conditions.append(in_progress)
        elif status == "overdue":
            conditions.append(Solution.submitted_at < cutoff)

        if assigned_to is not None:
            conditions.append(
                exists().where(
                    and_(
                        SolutionReview.solution_id == Solution.id,
                        SolutionReview.status == ReviewStatus.IN_PROGRESS.value,
                        SolutionReview.reviewer_id == assigned_to,
                    )
                )
            )

        if sort_by == "created":
            column = Solution.created_at
        else:
            column = Solution.submitted_at
        # deadline: 가장 오래 기다린 것부터
        if sort_by == "deadline" or sort_order == "asc":
            order = column.asc()
        else:
            order = column.desc()

        total = self.db.scalar(select(func.count()).select_from(Solution).where(*conditions)) or 0
        solutions = self.db.scalars(
            select(Solution)
            .where(*conditions)
            .order_by(order, Solution.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        items = [self._format(s, cutoff) for s in solutions]

        return {
            "solutions": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
            "stats": self.get_stats(total=total),
        }

    def _format(self, solution: Solution, cutoff: datetime) -> Dict[str, Any]:
        creator = self.db.get(CreatorProfile, solution.creator_id)
        creator_user = None
        if creator is not None:
            creator_user = self.db.scalars(select(UserProfile).where(UserProfile.user_id == creator.user_id)).first()

        active_review = self.db.scalars(
            select(SolutionReview)
            .where(SolutionReview.solution_id == solution.id)
            .where(SolutionReview.status == ReviewStatus.IN_PROGRESS.value)
            .limit(1)
        ).first()
        reviewer = None
        if active_review is not None:
            reviewer = self.db.scalars(
                select(UserProfile).where(UserProfile.user_id == active_review.reviewer_id)
            ).first()

        review_count = self.db.scalar(
            select(func.count()).select_from(SolutionReview).where(SolutionReview.solution_id == solution.id)
        ) or 0

        submitted = as_utc(solution.submitted_at) if solution.submitted_at else None
        now = datetime.now(timezone.utc)

        return {
            "id": str(solution.id),
            "title": solution.title,
            "description": solution.description,
            "category": solution.category,
            "price": float(solution.price) if solution.price is not None else None,
            "status": solution.status,
            "submittedAt": submitted.isoformat() if submitted else None,
            "creator": {
                "id": str(solution.creator_id),
                "name": (creator_user.display_name if creator_user else None) or (creator.display_name if creator else None),
                "email": creator_user.email if creator_user else None,
            },
            "assignedReviewer": _person(reviewer, active_review.reviewer_id if active_review else None),
            "reviewCount": review_count,
            "isOverdue": bool(submitted and submitted < cutoff),
            "daysSinceSubmission": (now - submitted).days if submitted else 0,
        }

    def get_stats(self, total: Optional[int] = None) -> Dict[str, int]:
        rows = self.db.execute(
            select(Solution.status, func.count(Solution.id))
            .where(Solution.status.in_([
                SolutionStatus.PENDING_REVIEW.value,
                SolutionStatus.APPROVED.value,
                SolutionStatus.REJECTED.value,
            ]))
            .group_by(Solution.status)
        ).all()
        counts = {status: n for status, n in rows}

        overdue = self.db.scalar(
            select(func.count()).select_from(Solution)
            .where(Solution.status == SolutionStatus.PENDING_REVIEW.value)
            .where(Solution.submitted_at < self._overdue_cutoff())
        ) or 0

        stats = {
            "pending": counts.get(SolutionStatus.PENDING_REVIEW.value, 0),
            "approved": counts.get(SolutionStatus.APPROVED.value, 0),
            "rejected": counts.get(SolutionStatus.REJECTED.value, 0),
            "overdue": overdue,
        }
        if total is not None:
            stats["total"] = total
        return stats
