"""Crawl frontier: FIFO task queue plus the discovered/visited/failed sets.

A frontier is owned by a single discover() call and mutated only by its
crawl loop, so it needs no locking. The sets only ever grow.
"""

import logging
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from ..models.crawl import CrawlResult, CrawlSource, CrawlTask


logger = logging.getLogger(__name__)


class FrontierStats:
    """Statistics tracking for frontier operations."""

    def __init__(self):
        self.enqueued_total = 0
        self.dequeued_total = 0
        self.deduplicated_total = 0
        self.capped_total = 0
        self.depth_limited_total = 0
        self.queue_size_max = 0
        self.start_time = time.time()

    def export(self) -> Dict[str, Any]:
        """Export statistics as dictionary."""
        return {
            "enqueued_total": self.enqueued_total,
            "dequeued_total": self.dequeued_total,
            "deduplicated_total": self.deduplicated_total,
            "capped_total": self.capped_total,
            "depth_limited_total": self.depth_limited_total,
            "queue_size_max": self.queue_size_max,
            "uptime_seconds": time.time() - self.start_time
        }


class CrawlFrontier:
    """Breadth-first frontier bounded by max_urls and max_depth.

    - ``discovered`` never holds more than ``max_urls`` URLs
    - tasks are only enqueued at depth <= ``max_depth``
    - a child task's depth is its parent's depth + 1
    """

    def __init__(self, max_urls: int, max_depth: int):
        """Initialize the frontier.

        Args:
            max_urls: Cap on the number of discovered URLs
            max_depth: Deepest link depth that is still crawled
        """
        if max_urls < 1:
            raise ValueError("max_urls must be at least 1")
        if max_depth < 0:
            raise ValueError("max_depth must not be negative")

        self.max_urls = max_urls
        self.max_depth = max_depth

        self._queue: Deque[CrawlTask] = deque()
        # dict keeps discovery order
        self._discovered: Dict[str, CrawlTask] = {}
        self._visited: Set[str] = set()
        self._failed: Set[str] = set()
        self._seed_url: Optional[str] = None
        self._stats = FrontierStats()

    def seed(self, url: str) -> CrawlTask:
        """Register the seed URL at depth 0."""
        if self._seed_url is not None:
            raise RuntimeError("Frontier already seeded")

        task = CrawlTask(url=url, depth=0)
        self._seed_url = url
        self._discovered[url] = task
        self._enqueue(task)
        return task

    def discover(self, url: str, depth: int, parent_url: Optional[str] = None) -> bool:
        """Record a newly found URL and enqueue it if within depth.

        Args:
            url: Normalized URL that passed the inclusion policy
            depth: Depth of the new URL (parent depth + 1)
            parent_url: Page the URL was found on

        Returns:
            True if the URL was newly discovered, False if duplicate or capped
        """
        if url in self._discovered:
            self._stats.deduplicated_total += 1
            return False

        if not self.has_capacity():
            self._stats.capped_total += 1
            return False

        task = CrawlTask(url=url, depth=depth, parent_url=parent_url)
        self._discovered[url] = task

        if depth <= self.max_depth:
            self._enqueue(task)
        else:
            self._stats.depth_limited_total += 1

        return True

    def _enqueue(self, task: CrawlTask) -> None:
        self._queue.append(task)
        self._stats.enqueued_total += 1
        self._stats.queue_size_max = max(self._stats.queue_size_max, len(self._queue))

    def next(self) -> Optional[CrawlTask]:
        """Dequeue the oldest task, or None when the queue is empty."""
        if not self._queue:
            return None
        self._stats.dequeued_total += 1
        return self._queue.popleft()

    def mark_visited(self, url: str) -> None:
        self._visited.add(url)

    def mark_failed(self, url: str) -> None:
        self._failed.add(url)

    def is_visited(self, url: str) -> bool:
        return url in self._visited

    def is_discovered(self, url: str) -> bool:
        return url in self._discovered

    def has_capacity(self) -> bool:
        return len(self._discovered) < self.max_urls

    def empty(self) -> bool:
        return not self._queue

    def qsize(self) -> int:
        return len(self._queue)

    @property
    def discovered(self) -> List[str]:
        return list(self._discovered)

    @property
    def visited(self) -> Set[str]:
        return set(self._visited)

    @property
    def failed(self) -> Set[str]:
        return set(self._failed)

    def results(self) -> List[CrawlResult]:
        """Every discovered URL in discovery order, with depth and source."""
        results = []
        for url, task in self._discovered.items():
            source = CrawlSource.LANDING_PAGE if url == self._seed_url else CrawlSource.DISCOVERED
            results.append(CrawlResult(
                url=url,
                depth=task.depth,
                source=source,
                parent_url=task.parent_url,
                discovered_at=task.discovered_at,
            ))
        return results

    def get_stats(self) -> Dict[str, Any]:
        """Get frontier statistics."""
        stats = self._stats.export()
        stats.update({
            "discovered": len(self._discovered),
            "visited": len(self._visited),
            "failed": len(self._failed),
            "queued": len(self._queue),
            "max_urls": self.max_urls,
            "max_depth": self.max_depth,
        })
        return stats
