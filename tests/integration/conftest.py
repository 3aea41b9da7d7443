"""
Integration test helper utilities.

A small menu API client built on httpx and pydantic, run through the
executor against responses mocked with pytest-httpx.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pydantic
import pytest
import pytest_asyncio

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    import pytest_httpx

BASE_URL = "https://api.example.com/rest/v1"


class MenuItem(pydantic.BaseModel):
    id: str
    name: str
    price: float


class MenuApi:
    """Thin typed wrapper over the menu endpoint."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch_menu(self, vendor_id: str) -> list[MenuItem]:
        response = await self._client.get("/menu_items", params={"vendor_id": vendor_id})
        response.raise_for_status()
        return [MenuItem.model_validate(row) for row in response.json()]


def menu_url(vendor_id: str = "v1") -> str:
    return f"{BASE_URL}/menu_items?vendor_id={vendor_id}"


def mock_menu_rows(count: int = 2) -> list[dict]:
    """Create menu rows as returned by the backend."""
    return [
        {"id": f"item-{i}", "name": f"Dish {i}", "price": 4.5 + i}
        for i in range(count)
    ]


def setup_menu_response(
    httpx_mock: pytest_httpx.HTTPXMock,
    status_code: int = 200,
    rows: list[dict] | None = None,
    vendor_id: str = "v1",
) -> None:
    """Register one menu response (consumed by exactly one request)."""
    httpx_mock.add_response(
        url=menu_url(vendor_id),
        method="GET",
        status_code=status_code,
        json=rows if rows is not None else mock_menu_rows(),
    )


@pytest_asyncio.fixture
async def menu_api() -> AsyncIterator[MenuApi]:
    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        yield MenuApi(client)


@pytest.fixture
def menu_backend(httpx_mock: pytest_httpx.HTTPXMock) -> Callable[..., None]:
    """Register menu responses in the order they should be served."""

    def register(*status_codes: int, rows: list[dict] | None = None) -> None:
        for status_code in status_codes:
            setup_menu_response(httpx_mock, status_code=status_code, rows=rows)

    return register
