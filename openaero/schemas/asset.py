from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl

from openaero.models import AssetType


class AssetIn(BaseModel):
    type: AssetType
    url: HttpUrl
    title: Optional[str] = None
    description: Optional[str] = None


class AssetCreateRequest(BaseModel):
    assets: List[AssetIn] = Field(min_length=1)
