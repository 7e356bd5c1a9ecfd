import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from openaero.auth import AuthUser
from openaero.exceptions import NotFoundError, ValidationError
from openaero.models import AssetType, SolutionAsset
from openaero.schemas.asset import AssetIn
from openaero.services.solution_access import ensure_can_edit, ensure_can_view, get_solution

logger = logging.getLogger(__name__)


def asset_to_api(asset: SolutionAsset) -> Dict[str, Any]:
    return {
        "id": str(asset.id),
        "type": asset.type,
        "url": asset.url,
        "title": asset.title,
        "description": asset.description,
        "createdAt": asset.created_at.isoformat() if asset.created_at else None,
    }


class SolutionAssetService:
    """솔루션 이미지/영상/문서 등 자산 관리"""

    def __init__(self, db: Session):
        self.db = db

    def list_assets(
        self,
        solution_id: uuid.UUID,
        user: Optional[AuthUser],
        asset_type: Optional[str] = None,
    ) -> List[SolutionAsset]:
        solution = get_solution(self.db, solution_id)
        ensure_can_view(solution, user, "资产")

        stmt = select(SolutionAsset).where(SolutionAsset.solution_id == solution_id)
        if asset_type and asset_type in AssetType.__members__:
            stmt = stmt.where(SolutionAsset.type == asset_type)
        return list(self.db.scalars(stmt.order_by(SolutionAsset.created_at.desc(), SolutionAsset.id)).all())

    def add_assets(self, solution_id: uuid.UUID, user: AuthUser, assets: Sequence[AssetIn]) -> List[SolutionAsset]:
        if not assets:
            raise ValidationError("至少需要一个资产", field="assets")

        solution = get_solution(self.db, solution_id, lock=True)
        ensure_can_edit(solution, user, "资产")

        created = [
            SolutionAsset(
                solution_id=solution.id,
                type=AssetType(a.type).value,
                url=str(a.url),
                title=a.title,
                description=a.description,
            )
            for a in assets
        ]
        self.db.add_all(created)
        self.db.flush()
        logger.info(f"자산 추가: solution={solution_id}, count={len(created)}, user={user.id}")
        return created

    def delete_asset(self, solution_id: uuid.UUID, asset_id: uuid.UUID, user: AuthUser) -> None:
        asset = self.db.get(SolutionAsset, asset_id)
        if asset is None or asset.solution_id != solution_id:
            raise NotFoundError("资产不存在或不属于此方案", context={"asset_id": str(asset_id)})

        solution = get_solution(self.db, solution_id, lock=True)
        ensure_can_edit(solution, user, "资产")

        self.db.delete(asset)
        self.db.flush()
        logger.info(f"자산 삭제: solution={solution_id}, asset={asset_id}, user={user.id}")
