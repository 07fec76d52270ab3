from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from .errors import ZeroResultRegressionError
from .models import TraversalResult
from .store import HistoricalStore

logger = logging.getLogger(__name__)


@dataclass
class PublishReport:
    total_items: int
    historical_count: int
    dataset_written: bool
    metadata: dict


def read_historical_count(store: HistoricalStore) -> int:
    metadata = store.read_metadata()
    if metadata is not None:
        for key in ("total_items", "product_count"):
            value = metadata.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    data = store.read_data()
    return len(data) if data is not None else 0


class PublishGuard:
    """Refuses to replace a non-empty published dataset with an empty one."""

    def __init__(self, store: HistoricalStore, clock: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def publish(self, result: TraversalResult) -> PublishReport:
        historical_count = read_historical_count(self.store)
        total = len(result.items)
        if total == 0 and historical_count > 0:
            raise ZeroResultRegressionError(historical_count)

        metadata = {
            "timestamp": self._clock().isoformat(),
            "total_items": total,
            "pages_scraped": result.page_count,
            "query_used": result.query,
            "stopped_reason": result.stopped_reason.value if result.stopped_reason else None,
            "source_url": result.base_url,
        }
        if total > 0:
            self.store.write_dataset(result.items)
        self.store.write_metadata(metadata)
        logger.info("Published %d items (previously %d)", total, historical_count)
        return PublishReport(
            total_items=total,
            historical_count=historical_count,
            dataset_written=total > 0,
            metadata=metadata,
        )
