from __future__ import annotations

from .models import CanonicalRecord


def identity_key(record: CanonicalRecord) -> str | None:
    if record.sku:
        return f"sku:{record.sku}"
    if record.url:
        return f"url:{record.url}"
    if record.name:
        return f"name:{record.name}|{record.price_sale}|{record.unit_label}"
    return None


class Deduplicator:
    """First-seen-wins aggregation for one query run."""

    def __init__(self) -> None:
        self.items: list[CanonicalRecord] = []
        self._by_key: dict[str, CanonicalRecord] = {}
        self._seen_urls: set[str] = set()
        self.duplicates = 0

    def add(self, record: CanonicalRecord) -> bool:
        key = identity_key(record)
        if key is None:
            self.items.append(record)
            return True
        # a sku-less record also collides with any earlier record on the same url
        if key in self._by_key or (not record.sku and record.url in self._seen_urls):
            self.duplicates += 1
            return False
        self._by_key[key] = record
        if record.url:
            self._seen_urls.add(record.url)
        self.items.append(record)
        return True

    def extend(self, records: list[CanonicalRecord]) -> int:
        return sum(1 for record in records if self.add(record))

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key
