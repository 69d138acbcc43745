from vinted_notifier.core.models import SearchResponse, VintedItem


def make_item(item_id: int, **fields) -> VintedItem:
    data = {
        "id": item_id,
        "title": f"item {item_id}",
        "price": 20.0,
        "url": f"https://www.vinted.fr/items/{item_id}",
    }
    data.update(fields)
    return VintedItem.model_validate(data)


class FakeSearchClient:
    """検索プロバイダの代わりに固定のバッチを返す"""

    def __init__(self, batches=None, error=None):
        self.batches = list(batches or [])
        self.error = error
        self.calls = []

    async def search(self, params, page=1, per_page=100):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        items = self.batches.pop(0) if self.batches else []
        return SearchResponse(items=items)


class RecordingDispatch:
    """送信内容を記録するディスパッチ"""

    def __init__(self, error=None):
        self.sent = []
        self.error = error

    async def __call__(self, subject, message):
        self.sent.append((subject, message))
        if self.error is not None:
            raise self.error
