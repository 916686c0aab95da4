"""
Asynchronous audit event processing.

Provides:
- IngestionQueue: Pending events with retry backoff
- EventProcessor: Per-event pipeline (enrich, index, count, persist, detect)
- ResourceProcessorRegistry: Resource-kind specific enrichment
- EventIndexer: (resource, action) search index
- StatisticsAggregator: Daily counters with windowed queries
"""

from auditflow.processing.indexer import EventIndexer, IndexEntry, SearchOptions
from auditflow.processing.processor import EventProcessor
from auditflow.processing.queue import (
    DEAD_LETTER_COLLECTION,
    IngestionQueue,
    QueueEntry,
    backoff_delay,
)
from auditflow.processing.resources import (
    ResourceKind,
    ResourceProcessor,
    ResourceProcessorRegistry,
)
from auditflow.processing.statistics import (
    TIME_WINDOWS,
    DailyStatistics,
    StatisticsAggregator,
    Stats,
)

__all__ = [
    "DEAD_LETTER_COLLECTION",
    "TIME_WINDOWS",
    "DailyStatistics",
    "EventIndexer",
    "EventProcessor",
    "IndexEntry",
    "IngestionQueue",
    "QueueEntry",
    "ResourceKind",
    "ResourceProcessor",
    "ResourceProcessorRegistry",
    "SearchOptions",
    "StatisticsAggregator",
    "Stats",
    "backoff_delay",
]
