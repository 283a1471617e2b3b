from __future__ import annotations

import json
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field

from .domain import Product, StoreIntegration


class CatalogSeed(BaseModel):
    products: List[Product] = Field(default_factory=list)
    integrations: List[StoreIntegration] = Field(default_factory=list)


def load_catalog_seed(path: str) -> CatalogSeed:
    if not path:
        return CatalogSeed()
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return CatalogSeed(**data)
