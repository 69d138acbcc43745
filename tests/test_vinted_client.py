import httpx
import pytest

from vinted_notifier.core.errors import ProviderError
from vinted_notifier.core.models import SearchParams
from vinted_notifier.search.vinted_client import VintedClient

SEARCH_BODY = {
    "items": [
        {
            "id": 101,
            "title": "Nike Air Max",
            "price": {"amount": "45.0", "currency_code": "EUR"},
            "url": "https://www.vinted.fr/items/101",
            "brand_title": "Nike",
            "size_title": "42",
            "user": {"id": 7, "login": "seller"},
            "unknown_field": True,
        },
        {"id": 102, "title": "Adidas", "price": "12.5"},
    ],
    "pagination": {"current_page": 1, "total_pages": 3, "total_entries": 250, "per_page": 100},
}


def make_client(handler) -> VintedClient:
    return VintedClient(
        base_url="https://vinted.test/api/v2",
        request_interval=0,
        proxy=None,
        transport=httpx.MockTransport(handler),
    )


async def test_search_parses_items_and_pagination() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        return httpx.Response(200, json=SEARCH_BODY)

    async with make_client(handler) as client:
        response = await client.search(SearchParams(search_text="nike", price_to=50), page=2)

    assert seen["url"].path == "/api/v2/items"
    assert seen["url"].params["search_text"] == "nike"
    assert seen["url"].params["page"] == "2"
    assert seen["url"].params["order"] == "newest_first"
    assert "price_from" not in seen["url"].params

    assert [item.id for item in response.items] == [101, 102]
    assert response.items[0].price == 45.0
    assert response.items[1].price == 12.5
    assert response.pagination.has_more is True


async def test_non_2xx_raises_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"message": "Too many requests"})

    async with make_client(handler) as client:
        with pytest.raises(ProviderError) as exc_info:
            await client.search(SearchParams())

    assert exc_info.value.status == 429
    assert "Too many requests" in str(exc_info.value)


async def test_get_item() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v2/items/55"
        return httpx.Response(200, json={"item": {"id": 55, "title": "Coat", "price": "80"}})

    async with make_client(handler) as client:
        item = await client.get_item(55)

    assert item.id == 55
    assert item.price == 80


def test_search_params_validation() -> None:
    with pytest.raises(ValueError):
        SearchParams(price_from=50, price_to=10)
    with pytest.raises(ValueError):
        SearchParams(order="random")
