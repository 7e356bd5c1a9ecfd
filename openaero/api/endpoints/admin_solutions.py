"""
관리자 심사 API
- 심사 대기열 / 심사 시작·완료·이력 / 일괄 심사 / 심사 통계
"""
import logging
import uuid
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from openaero.api.responses import ok
from openaero.auth import AuthUser, require_admin
from openaero.db import get_session
from openaero.exceptions import OpenAeroError, ValidationError
from openaero.models import ReviewDecision
from openaero.schemas.review import BatchReviewRequest, CompleteReviewRequest, StartReviewRequest
from openaero.services.review_queue import ReviewQueueService
from openaero.services.solution_access import solution_to_api
from openaero.services.solution_review import SolutionReviewService
from openaero.settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/solutions/queue")
def get_review_queue(
    queue_status: Literal["all", "pending", "in_progress", "overdue"] = Query(default="all", alias="status"),
    assigned_to: Optional[uuid.UUID] = Query(default=None, alias="assignedTo"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: Literal["created", "submitted", "deadline"] = Query(default="submitted", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    data = ReviewQueueService(session).get_queue(
        status=queue_status,
        assigned_to=assigned_to,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ok(data, "获取审核队列成功")


@router.post("/solutions/batch-review")
def batch_review(
    payload: BatchReviewRequest,
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    """
    여러 솔루션을 한 번에 승인/거절. 건별 실패는 결과에 담고 나머지는 계속 처리

    complete_review 는 모든 검사를 쓰기 전에 끝내므로 실패 건이 부분 쓰기를 남기지 않습니다.
    """
    if len(payload.solution_ids) > settings.batch_review_max_size:
        raise ValidationError(
            f"一次最多审核{settings.batch_review_max_size}个方案", field="solutionIds"
        )

    if payload.action == "approve":
        decision = ReviewDecision.APPROVED.value
        notes = payload.notes
    else:
        decision = ReviewDecision.REJECTED.value
        notes = payload.notes or "方案不符合要求"

    service = SolutionReviewService(session)
    results = []
    for solution_id in payload.solution_ids:
        try:
            review = service.complete_review(
                solution_id,
                decision,
                reviewer_id=admin.id,
                decision_notes=notes,
            )
        except OpenAeroError as e:
            logger.warning(f"일괄 심사 실패: solution={solution_id}: {e.message}")
            results.append({"solutionId": str(solution_id), "success": False, "error": e.message})
            continue
        results.append({
            "solutionId": str(solution_id),
            "success": True,
            "data": solution_to_api(review.solution),
        })

    succeeded = sum(1 for r in results if r["success"])
    failed = len(results) - succeeded
    logger.info(f"일괄 심사({payload.action}) by {admin.id}: 성공 {succeeded}, 실패 {failed}")

    return ok(
        {
            "results": results,
            "summary": {"total": len(results), "success": succeeded, "failed": failed},
        },
        f"批量审核完成: {succeeded}个成功, {failed}个失败",
    )


@router.post("/solutions/{solution_id}/review", status_code=status.HTTP_201_CREATED)
def start_solution_review(
    solution_id: uuid.UUID,
    payload: Optional[StartReviewRequest] = Body(default=None),
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    reviewer_id = (payload.reviewer_id if payload else None) or admin.id
    service = SolutionReviewService(session)
    review = service.start_review(solution_id, reviewer_id)
    return ok(service.to_dict(review), "审核已开始")


@router.put("/solutions/{solution_id}/review")
def complete_solution_review(
    solution_id: uuid.UUID,
    payload: CompleteReviewRequest,
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    service = SolutionReviewService(session)
    review = service.complete_review(
        solution_id,
        payload.decision,
        review_id=payload.review_id,
        reviewer_id=admin.id,
        score=payload.score,
        quality_score=payload.quality_score,
        completeness=payload.completeness,
        innovation=payload.innovation,
        market_potential=payload.market_potential,
        comments=payload.comments,
        decision_notes=payload.decision_notes,
        suggestions=payload.suggestions,
    )
    return ok(service.to_dict(review), "审核已完成")


@router.get("/solutions/{solution_id}/review")
def get_solution_review_history(
    solution_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    history = SolutionReviewService(session).get_review_history(solution_id)
    return ok(history, "获取审核历史成功")


@router.get("/review-stats")
def get_review_stats(
    reviewer_id: Optional[uuid.UUID] = Query(default=None, alias="reviewerId"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    session: Session = Depends(get_session),
    admin: AuthUser = Depends(require_admin),
):
    data = {
        "reviews": SolutionReviewService(session).get_review_statistics(reviewer_id, start_date, end_date),
        "queue": ReviewQueueService(session).get_stats(),
    }
    return ok(data, "获取审核统计成功")
