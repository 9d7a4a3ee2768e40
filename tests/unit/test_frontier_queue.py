"""Unit tests for the crawl frontier."""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from seo_sentinel.audit.models.crawl import CrawlSource
from seo_sentinel.audit.queue.frontier_queue import CrawlFrontier


class TestCrawlFrontier:
    """Test cases for CrawlFrontier."""

    def test_seed_is_depth_zero_landing_page(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=2)
        task = frontier.seed("https://example.com/")

        assert task.depth == 0
        assert frontier.qsize() == 1
        results = frontier.results()
        assert results[0].source == CrawlSource.LANDING_PAGE
        assert results[0].parent_url is None

    def test_seed_only_once(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=2)
        frontier.seed("https://example.com/")

        with pytest.raises(RuntimeError):
            frontier.seed("https://example.com/other")

    def test_fifo_order(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=2)
        frontier.seed("https://example.com/")
        frontier.discover("https://example.com/a", 1, "https://example.com/")
        frontier.discover("https://example.com/b", 1, "https://example.com/")

        assert frontier.next().url == "https://example.com/"
        assert frontier.next().url == "https://example.com/a"
        assert frontier.next().url == "https://example.com/b"
        assert frontier.next() is None
        assert frontier.empty()

    def test_duplicates_are_ignored(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=2)
        frontier.seed("https://example.com/")

        assert frontier.discover("https://example.com/a", 1)
        assert not frontier.discover("https://example.com/a", 2)
        assert not frontier.discover("https://example.com/", 1)
        assert frontier.discovered == ["https://example.com/", "https://example.com/a"]
        assert frontier.get_stats()["deduplicated_total"] == 2

    def test_discovered_never_exceeds_max_urls(self):
        frontier = CrawlFrontier(max_urls=3, max_depth=5)
        frontier.seed("https://example.com/")

        accepted = [frontier.discover(f"https://example.com/{i}", 1) for i in range(5)]

        assert accepted == [True, True, False, False, False]
        assert len(frontier.discovered) == 3
        assert not frontier.has_capacity()
        assert frontier.get_stats()["capped_total"] == 3

    def test_urls_beyond_max_depth_are_listed_but_not_queued(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=1)
        frontier.seed("https://example.com/")
        frontier.next()

        assert frontier.discover("https://example.com/deep", 2, "https://example.com/a")

        assert frontier.empty()
        assert "https://example.com/deep" in frontier.discovered
        assert frontier.get_stats()["depth_limited_total"] == 1

    def test_results_keep_depth_and_parent(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=2)
        frontier.seed("https://example.com/")
        frontier.discover("https://example.com/a", 1, "https://example.com/")

        child = frontier.results()[1]
        assert child.depth == 1
        assert child.parent_url == "https://example.com/"
        assert child.source == CrawlSource.DISCOVERED

    def test_visited_and_failed_sets(self):
        frontier = CrawlFrontier(max_urls=10, max_depth=2)
        frontier.seed("https://example.com/")
        frontier.mark_visited("https://example.com/")
        frontier.mark_failed("https://example.com/")

        assert frontier.is_visited("https://example.com/")
        assert frontier.failed == {"https://example.com/"}

        stats = frontier.get_stats()
        assert stats["visited"] == 1
        assert stats["failed"] == 1

    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            CrawlFrontier(max_urls=0, max_depth=1)
        with pytest.raises(ValueError):
            CrawlFrontier(max_urls=1, max_depth=-1)
