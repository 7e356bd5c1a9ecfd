"""
BOM 저장소

solution_bom_items 행을 기준으로 읽고 쓰며, dual-write 가 켜져 있으면 Solution.bom 투영본을
같은 트랜잭션 안에서 덮어씁니다.
"""
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, exists, func, select
from sqlalchemy.orm import Session

from openaero.models import Solution, SolutionBomItem
from openaero.schemas.bom import BomItem
from openaero.services.bom.dual_write import (
    bom_items_to_json,
    diff_bom_items,
    diff_bom_totals,
    parse_legacy_bom,
    should_dual_write,
)

logger = logging.getLogger(__name__)


def _decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def row_to_api(row: SolutionBomItem) -> Dict[str, Any]:
    return {
        "id": str(row.id),
        "name": row.name,
        "model": row.model,
        "quantity": row.quantity,
        "unit": row.unit or "个",
        "notes": row.notes,
        "unitPrice": float(row.unit_price) if row.unit_price is not None else None,
        "supplier": row.supplier,
        "partNumber": row.part_number,
        "manufacturer": row.manufacturer,
        "category": row.category,
        "position": row.position,
        "weight": float(row.weight) if row.weight is not None else None,
        "specifications": row.specifications,
        "productId": row.product_id,
    }


class BomRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_rows(self, solution_id: uuid.UUID) -> List[SolutionBomItem]:
        stmt = (
            select(SolutionBomItem)
            .where(SolutionBomItem.solution_id == solution_id)
            .order_by(SolutionBomItem.sort_order, SolutionBomItem.id)
        )
        return list(self.db.scalars(stmt).all())

    def list_items(self, solution: Solution) -> List[Dict[str, Any]]:
        """
        BOM 항목 조회. 행이 있으면 행을, 없으면 레거시 JSON 을 파싱해 돌려줌
        """
        rows = self.list_rows(solution.id)
        if rows:
            return [row_to_api(r) for r in rows]

        legacy = parse_legacy_bom(solution.bom)
        for index, item in enumerate(legacy):
            item["id"] = f"bom-{index}"
        return legacy

    def replace_items(self, solution: Solution, items: Sequence[BomItem]) -> List[SolutionBomItem]:
        """
        기존 행 전체 삭제 후 새 목록 일괄 삽입 (순서 유지)
        """
        self.db.execute(
            delete(SolutionBomItem)
            .where(SolutionBomItem.solution_id == solution.id)
            .execution_options(synchronize_session=False)
        )

        rows = []
        for index, item in enumerate(items):
            rows.append(
                SolutionBomItem(
                    solution_id=solution.id,
                    sort_order=index,
                    name=item.name,
                    model=item.model,
                    quantity=item.quantity,
                    unit=item.unit or "个",
                    notes=item.notes,
                    unit_price=_decimal(item.unit_price),
                    supplier=item.supplier,
                    part_number=item.part_number,
                    manufacturer=item.manufacturer,
                    category=item.category,
                    position=item.position,
                    weight=item.weight,
                    specifications=item.specifications,
                    product_id=item.product_id,
                )
            )
        self.db.add_all(rows)

        if should_dual_write():
            solution.bom = bom_items_to_json([i.to_api() for i in items])
        elif not items:
            # 빈 목록 저장 후 레거시 JSON 이 다시 읽히지 않도록
            solution.bom = None

        self.db.flush()
        logger.info(f"BOM 갱신: solution={solution.id}, items={len(rows)}, dual_write={should_dual_write()}")
        return rows

    # ----- 레거시 JSON -> 행 이관 -----

    def _legacy_only_query(self):
        has_rows = exists().where(SolutionBomItem.solution_id == Solution.id)
        return select(Solution).where(Solution.bom.is_not(None)).where(~has_rows)

    def migration_status(self) -> Dict[str, Any]:
        total = self.db.scalar(select(func.count()).select_from(Solution)) or 0
        with_rows = self.db.scalar(select(func.count(func.distinct(SolutionBomItem.solution_id)))) or 0
        pending = [
            s for s in self.db.scalars(self._legacy_only_query()).all()
            if parse_legacy_bom(s.bom)
        ]
        return {
            "totalSolutions": total,
            "solutionsWithRows": with_rows,
            "solutionsPendingMigration": len(pending),
            "pendingSolutionIds": [str(s.id) for s in pending],
        }

    def migrate_legacy(self, dry_run: bool = False) -> Dict[str, Any]:
        """
        JSON 만 있고 행이 없는 솔루션을 행으로 채움. 검증 실패한 솔루션은 건너뛰고 errors 에 기록
        """
        stats: Dict[str, Any] = {
            "solutionsMigrated": 0,
            "solutionsSkipped": 0,
            "itemsCreated": 0,
            "errors": [],
        }

        for solution in self.db.scalars(self._legacy_only_query()).all():
            raw_items = parse_legacy_bom(solution.bom)
            if not raw_items:
                stats["solutionsSkipped"] += 1
                continue

            try:
                items = [BomItem.model_validate(raw) for raw in raw_items]
            except PydanticValidationError as e:
                stats["solutionsSkipped"] += 1
                stats["errors"].append({"solutionId": str(solution.id), "error": str(e)})
                logger.warning(f"BOM 이관 건너뜀: solution={solution.id}: {e.error_count()}개 검증 오류")
                continue

            if not dry_run:
                self.replace_items(solution, items)
            stats["solutionsMigrated"] += 1
            stats["itemsCreated"] += len(items)

        return stats

    # ----- 행 / JSON 정합성 검증 -----

    def compare_solution(self, solution: Solution) -> Dict[str, Any]:
        """
        한 솔루션의 행과 Solution.bom 비교

        status: consistent / inconsistent / missing_table(JSON 만 있음) / missing_json(행만 있음)
        """
        row_items = [row_to_api(r) for r in self.list_rows(solution.id)]
        json_items = parse_legacy_bom(solution.bom)
        result: Dict[str, Any] = {
            "solutionId": str(solution.id),
            "title": solution.title,
            "status": "consistent",
            "rowCount": len(row_items),
            "jsonCount": len(json_items),
            "differences": [],
        }

        if not row_items and not json_items:
            return result
        if not row_items:
            result["status"] = "missing_table"
            return result
        if not json_items:
            result["status"] = "missing_json"
            return result

        differences = result["differences"]
        if len(row_items) != len(json_items):
            differences.append(f"항목 수 불일치: 행 {len(row_items)}개, JSON {len(json_items)}개")
        else:
            for index, (row_item, json_item) in enumerate(zip(row_items, json_items), start=1):
                fields = diff_bom_items(row_item, json_item)
                if fields:
                    differences.append(f"{index}번째 항목 불일치({row_item['name']}): {', '.join(fields)}")

        for key in diff_bom_totals(solution.bom, row_items):
            differences.append(f"합계 불일치: {key}")

        if differences:
            result["status"] = "inconsistent"
        return result

    def verify_consistency(self) -> Dict[str, Any]:
        """
        전체 솔루션의 행/투영본 정합성 보고

        inconsistent 는 항상, missing_json 은 dual-write 가 켜져 있을 때만 mismatches 에 담깁니다.
        missing_table 은 이관 대기(migration_status)로 집계만 합니다.
        """
        counts = {"consistent": 0, "inconsistent": 0, "missing_table": 0, "missing_json": 0}
        mismatches = []
        dual_write = should_dual_write()

        for solution in self.db.scalars(select(Solution).order_by(Solution.created_at, Solution.id)).all():
            result = self.compare_solution(solution)
            counts[result["status"]] += 1
            if result["status"] == "inconsistent" or (result["status"] == "missing_json" and dual_write):
                mismatches.append(result)
                logger.warning(f"BOM 정합성 불일치: solution={solution.id}, status={result['status']}")

        return {
            "totalSolutions": sum(counts.values()),
            "consistent": counts["consistent"],
            "inconsistent": counts["inconsistent"],
            "missingTable": counts["missing_table"],
            "missingJson": counts["missing_json"],
            "dualWrite": dual_write,
            "mismatches": mismatches,
        }
