"""Client for a paginated REST product collection (DummyJSON style).

Collections answer ``GET {base}?limit=&skip=`` with ``{items|products, total}``.
"""

import math
from typing import Any

import httpx
from pydantic import BaseModel, Field, model_validator


class ProductPage(BaseModel):
    items: list[dict[str, Any]] = Field(default_factory=list)
    total: int
    skip: int = 0
    limit: int

    @model_validator(mode="before")
    @classmethod
    def _accept_products_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "items" not in data and "products" in data:
            data = {**data, "items": data["products"]}
        return data

    @property
    def page(self) -> int:
        return self.skip // self.limit + 1 if self.limit else 1

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit)) if self.limit else 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


class ProductCatalogClient:
    def __init__(self, client: httpx.AsyncClient, base_url: str, page_size: int = 12) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self.page_size = page_size

    async def fetch_page(self, page: int = 1, query: str | None = None) -> ProductPage:
        if page < 1:
            raise ValueError("page starts at 1")
        params: dict[str, Any] = {"limit": self.page_size, "skip": (page - 1) * self.page_size}
        url = self._base_url
        if query:
            url = f"{self._base_url}/search"
            params["q"] = query
        response = await self._client.get(url, params=params, headers={"Accept": "application/json"})
        response.raise_for_status()
        data = response.json()
        data.setdefault("limit", self.page_size)
        data.setdefault("skip", params["skip"])
        return ProductPage.model_validate(data)
