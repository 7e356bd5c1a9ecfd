"""
BOM 요청/응답 스키마.
API 는 camelCase(unitPrice, partNumber ...) 를 사용하고 DB 는 snake_case 를 사용합니다.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from openaero.models import BomCategory


class BomItem(BaseModel):
    name: str = Field(min_length=1)
    model: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit: Optional[str] = "个"
    notes: Optional[str] = None
    unit_price: Optional[float] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    part_number: Optional[str] = None
    manufacturer: Optional[str] = None
    category: Optional[BomCategory] = None
    position: Optional[str] = None
    weight: Optional[float] = Field(default=None, ge=0)  # g
    specifications: Optional[dict[str, Any]] = None
    product_id: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class BomUpdateRequest(BaseModel):
    # 빈 배열 허용 (초안 저장)
    items: List[BomItem]
