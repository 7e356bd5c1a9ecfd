"""
크리에이터용 솔루션 API
- BOM 조회/일괄 교체
- 자산 조회/추가/삭제
- 심사 제출, 게시, 보관
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from openaero.api.responses import ok
from openaero.auth import AuthUser, get_current_user, get_optional_user
from openaero.db import get_session
from openaero.schemas.asset import AssetCreateRequest
from openaero.schemas.bom import BomUpdateRequest
from openaero.services.bom.repository import BomRepository, row_to_api
from openaero.services.solution_access import ensure_can_edit, ensure_can_view, get_solution, solution_to_api
from openaero.services.solution_assets import SolutionAssetService, asset_to_api
from openaero.services.solution_status_workflow import SolutionWorkflowService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{solution_id}/bom")
def get_solution_bom(
    solution_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Optional[AuthUser] = Depends(get_optional_user),
):
    solution = get_solution(session, solution_id)
    ensure_can_view(solution, user, "BOM")
    items = BomRepository(session).list_items(solution)
    return ok({"items": items}, "获取 BOM 清单成功")


@router.put("/{solution_id}/bom")
def update_solution_bom(
    solution_id: uuid.UUID,
    payload: BomUpdateRequest,
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    """BOM 전체 교체. 빈 배열은 초안 저장으로 취급"""
    solution = get_solution(session, solution_id, lock=True)
    ensure_can_edit(solution, user, "BOM")

    rows = BomRepository(session).replace_items(solution, payload.items)
    message = "BOM 清单更新成功" if rows else "BOM 清单已清空（草稿保存）"
    return ok({"items": [row_to_api(r) for r in rows]}, message)


@router.get("/{solution_id}/assets")
def list_solution_assets(
    solution_id: uuid.UUID,
    asset_type: Optional[str] = Query(default=None, alias="type"),
    session: Session = Depends(get_session),
    user: Optional[AuthUser] = Depends(get_optional_user),
):
    assets = SolutionAssetService(session).list_assets(solution_id, user, asset_type)
    return ok({"assets": [asset_to_api(a) for a in assets]}, "获取资产列表成功")


@router.post("/{solution_id}/assets", status_code=status.HTTP_201_CREATED)
def add_solution_assets(
    solution_id: uuid.UUID,
    payload: AssetCreateRequest,
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    assets = SolutionAssetService(session).add_assets(solution_id, user, payload.assets)
    return ok({"assets": [asset_to_api(a) for a in assets]}, "资产添加成功")


@router.delete("/{solution_id}/assets/{asset_id}")
def delete_solution_asset(
    solution_id: uuid.UUID,
    asset_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    SolutionAssetService(session).delete_asset(solution_id, asset_id, user)
    return ok({"id": str(asset_id)}, "资产删除成功")


@router.post("/{solution_id}/submit")
def submit_solution(
    solution_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    solution = SolutionWorkflowService(session).submit_for_review(solution_id, user)
    return ok(solution_to_api(solution), "方案已提交审核")


@router.post("/{solution_id}/publish")
def publish_solution(
    solution_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    solution = SolutionWorkflowService(session).publish_solution(solution_id, user)
    return ok(solution_to_api(solution), "方案已发布")


@router.post("/{solution_id}/archive")
def archive_solution(
    solution_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    solution = SolutionWorkflowService(session).archive_solution(solution_id, user)
    return ok(solution_to_api(solution), "方案已归档")
