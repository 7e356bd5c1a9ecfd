"""
BOM JSON 투영/레거시 파싱

solution_bom_items 테이블이 기준 데이터이고, Solution.bom 은 dual-write 가 켜져 있는 동안
쓰기 시점에 함께 갱신되는 투영본입니다. 과거 데이터는 아래 형태의 JSON 만 가지고 있을 수 있습니다.

    {"components": [{...}, ...]}      # 표준
    [{...}, ...]                      # 배열
    {"<부품명>": {...}, ...}           # 키-값 객체
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from openaero.settings import settings

DEFAULT_UNIT = "个"
UNKNOWN_ITEM_NAME = "未知物料"

API_FIELDS = (
    "name", "model", "quantity", "unit", "notes", "unitPrice", "supplier", "partNumber",
    "manufacturer", "category", "position", "weight", "specifications", "productId",
)


def should_dual_write() -> bool:
    return settings.enable_bom_dual_write


def _first(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_quantity(value: Any) -> int:
    if isinstance(value, bool):
        return 1
    if isinstance(value, int):
        return value
    if value is None or value == "":
        return 1
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            return int(float(str(value)))
        except ValueError:
            return 1


def normalize_bom_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """레거시 별칭(price, part_number, sku, specs, description, product_id, component)을 API 필드로 정규화"""
    specs = _first(item, "specifications", "specs")
    if specs is not None and not isinstance(specs, dict):
        specs = {"value": specs}

    return {
        "name": _first(item, "name", "component") or UNKNOWN_ITEM_NAME,
        "model": _first(item, "model"),
        "quantity": _to_quantity(item.get("quantity")),
        "unit": _first(item, "unit") or DEFAULT_UNIT,
        "notes": _first(item, "notes", "description"),
        "unitPrice": _first(item, "unitPrice", "price"),
        "supplier": _first(item, "supplier"),
        "partNumber": _first(item, "partNumber", "part_number", "sku"),
        "manufacturer": _first(item, "manufacturer"),
        "category": _first(item, "category"),
        "position": _first(item, "position"),
        "weight": _first(item, "weight"),
        "specifications": specs,
        "productId": _first(item, "productId", "product_id"),
    }


def parse_legacy_bom(bom_json: Any) -> List[Dict[str, Any]]:
    if not bom_json:
        return []

    if isinstance(bom_json, list):
        return [normalize_bom_item(i) for i in bom_json if isinstance(i, dict)]

    if isinstance(bom_json, dict):
        components = bom_json.get("components")
        if isinstance(components, list):
            return [normalize_bom_item(i) for i in components if isinstance(i, dict)]

        items = []
        for key, value in bom_json.items():
            # 투영본의 집계 필드
            if key in ("totalCost", "totalWeight", "itemCount", "updatedAt", "components"):
                continue
            data = dict(value) if isinstance(value, dict) else {}
            data.setdefault("name", key)
            items.append(normalize_bom_item(data))
        return items

    return []


def _num(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def bom_items_to_json(items: List[Dict[str, Any]], now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    API 형태(camelCase) 항목 목록을 Solution.bom 투영 JSON 으로 변환. 빈 목록이면 None
    """
    if not items:
        return None

    components = []
    total_cost = 0.0
    total_weight = 0.0
    for item in items:
        component = {k: item.get(k) for k in API_FIELDS}
        component["unitPrice"] = _num(component["unitPrice"])
        component["weight"] = _num(component["weight"])
        components.append(component)

        quantity = component["quantity"] or 1
        if component["unitPrice"] is not None:
            total_cost += component["unitPrice"] * quantity
        if component["weight"] is not None:
            total_weight += component["weight"] * quantity

    return {
        "components": components,
        "totalCost": round(total_cost, 2),
        "totalWeight": round(total_weight, 2),
        "itemCount": len(components),
        "updatedAt": (now or datetime.now(timezone.utc)).isoformat(),
    }


# ----- 행 / 투영본 정합성 비교 -----

COMPARE_FIELDS = (
    "name", "model", "quantity", "unit", "notes", "unitPrice", "supplier", "partNumber",
    "manufacturer", "category", "position", "weight", "productId",
)
NUMERIC_TOLERANCE = 0.01


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def diff_bom_items(left: Dict[str, Any], right: Dict[str, Any]) -> List[str]:
    """
    API 형태 두 항목에서 값이 다른 필드 이름 목록

    단가와 중량은 0.01 미만 차이를 같은 값으로 보고, 단위가 비어 있으면 기본 단위로 봅니다.
    """
    fields = []
    for key in COMPARE_FIELDS:
        a, b = left.get(key), right.get(key)
        if key == "quantity":
            same = _to_quantity(a) == _to_quantity(b)
        elif key in ("unitPrice", "weight"):
            same = abs((_as_float(a) or 0.0) - (_as_float(b) or 0.0)) < NUMERIC_TOLERANCE
        elif key == "unit":
            same = _text(a or DEFAULT_UNIT) == _text(b or DEFAULT_UNIT)
        else:
            same = _text(a) == _text(b)
        if not same:
            fields.append(key)
    return fields


def diff_bom_totals(bom_json: Any, items: List[Dict[str, Any]]) -> List[str]:
    """투영본에 저장된 totalCost / totalWeight 가 항목 합계와 다른 키 목록"""
    if not isinstance(bom_json, dict) or not items:
        return []

    expected = bom_items_to_json(items)
    keys = []
    for key in ("totalCost", "totalWeight"):
        if key not in bom_json:
            continue
        stored = _as_float(bom_json.get(key))
        if stored is None or abs(stored - expected[key]) >= NUMERIC_TOLERANCE:
            keys.append(key)
    return keys
