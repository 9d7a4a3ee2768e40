"""Crawler engine: breadth-first link discovery from a landing page.

This module coordinates the crawl frontier, the inclusion policy, the
sliding-window rate limiter and the link cache to turn a seed URL into the
list of URLs to audit.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .capture.render import NavigationResponse, PageHandle, PostLoadHook, PreNavigationHook, RenderProvider
from .errors import EngineInitializationError, NavigationError, SentinelError
from .input.link_discovery import DiscoveredLink, LinkDiscovery
from .models.crawl import CrawlConfig, CrawlMetrics, CrawlResult, CrawlTask, DiscoveryOptions
from .queue.frontier_queue import CrawlFrontier
from .queue.rate_limiter import SlidingWindowRateLimiter
from .utils.cache import TTLCache
from .utils.scope_matcher import ScopeMatcher, create_scope_matcher_from_config
from .utils.url_normalizer import URLNormalizationError, normalize, resolve


logger = logging.getLogger(__name__)


class CrawlerError(SentinelError):
    """Raised when crawler encounters a fatal error."""
    pass


class CrawlerEngine:
    """Discovers the URLs reachable from a landing page.

    Components:
    - Crawl frontier (one per discover() call)
    - Inclusion policy (scope matcher)
    - Sliding-window rate limiter shared across runs
    - TTL cache of extracted links shared across runs
    """

    def __init__(
        self,
        config: CrawlConfig,
        render_provider: RenderProvider,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        cache: Optional[TTLCache] = None,
        link_discovery: Optional[LinkDiscovery] = None,
        pre_navigation_hooks: Sequence[PreNavigationHook] = (),
        post_load_hooks: Sequence[PostLoadHook] = ()
    ):
        """Initialize crawler with configuration.

        Args:
            config: Crawl configuration
            render_provider: Source of isolated pages
            rate_limiter: Limiter for page fetches (built from config if None)
            cache: Link cache (built from config if None)
            link_discovery: Anchor extractor
            pre_navigation_hooks: Awaited with each fresh page before navigation
            post_load_hooks: Awaited with each page after it settles
        """
        self.config = config
        self.render_provider = render_provider
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            max_requests=config.rate_limit_requests,
            window=config.rate_limit_window
        )
        self.cache = cache or TTLCache(ttl=config.cache_ttl, max_size=config.cache_max_size)
        self.link_discovery = link_discovery or LinkDiscovery()
        self.pre_navigation_hooks = list(pre_navigation_hooks)
        self.post_load_hooks = list(post_load_hooks)

        self._metrics = CrawlMetrics(config=config)
        self._frontier: Optional[CrawlFrontier] = None
        self._scope_matcher: Optional[ScopeMatcher] = None
        self._retained_pages: List[PageHandle] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Start the render provider.

        Raises:
            EngineInitializationError: If the provider cannot start
        """
        if self._initialized:
            return
        try:
            await self.render_provider.start()
        except Exception as e:
            raise EngineInitializationError(f"Failed to start render provider: {e}") from e
        self._initialized = True
        logger.info("Crawler engine initialized")

    async def discover(self, seed_url: str, options: Optional[DiscoveryOptions] = None) -> List[CrawlResult]:
        """Crawl breadth-first from ``seed_url`` and return every discovered URL.

        Args:
            seed_url: Landing page URL
            options: Per-call overrides of depth, URL cap and external links

        Returns:
            Discovered URLs in discovery order with depth and source

        Raises:
            CrawlerError: If the seed URL is not a valid http(s) URL
        """
        options = options or DiscoveryOptions()
        max_depth = options.max_depth if options.max_depth is not None else self.config.max_depth
        max_urls = options.max_urls if options.max_urls is not None else self.config.max_urls
        follow_external = (
            options.follow_external_links
            if options.follow_external_links is not None
            else self.config.follow_external_links
        )

        try:
            seed = normalize(seed_url)
        except URLNormalizationError as e:
            raise CrawlerError(f"Invalid seed URL '{seed_url}': {e}") from e

        if not self._initialized:
            await self.initialize()

        frontier = CrawlFrontier(max_urls=max_urls, max_depth=max_depth)
        scope = create_scope_matcher_from_config(self.config, seed, follow_external_links=follow_external)
        self._frontier = frontier
        self._scope_matcher = scope
        self._metrics = CrawlMetrics(config=self.config)
        self._metrics.is_running = True
        self._metrics.stats.start_time = datetime.utcnow()

        frontier.seed(seed)
        logger.info(f"Starting crawl from {seed} (max_depth={max_depth}, max_urls={max_urls})")

        try:
            while not frontier.empty() and frontier.has_capacity():
                await self.rate_limiter.acquire()

                task = frontier.next()
                if task is None:
                    break
                if frontier.is_visited(task.url) or task.depth > max_depth:
                    continue

                await self._crawl_page(task, frontier, scope)
        finally:
            self._metrics.is_running = False
            self._metrics.current_url = None
            self._metrics.stats.end_time = datetime.utcnow()
            self._metrics.stats.urls_discovered = len(frontier.discovered)

        results = frontier.results()
        logger.info(
            f"Crawl finished: {len(results)} discovered, {len(frontier.visited)} visited, "
            f"{len(frontier.failed)} failed"
        )
        return results

    async def _crawl_page(self, task: CrawlTask, frontier: CrawlFrontier, scope: ScopeMatcher) -> None:
        """Fetch one page (or its cached links) and feed new URLs to the frontier."""
        url = task.url
        # Marked before the fetch: a failed page is not retried within the run
        frontier.mark_visited(url)
        self._metrics.current_url = url
        self._metrics.stats.urls_visited += 1

        cache_key = f"crawl:{url}"
        links = self.cache.get(cache_key)

        if links is not None:
            self._metrics.stats.cache_hits += 1
            logger.debug(f"Using cached links for {url}")
        else:
            try:
                links = await self._fetch_links(url)
            except Exception as e:
                error = NavigationError.from_exception(url, e)
                frontier.mark_failed(url)
                self._metrics.stats.urls_failed += 1
                self._metrics.add_error(url, error.kind.value, error.message)
                logger.error(f"Failed to crawl {url} ({error.kind.value}): {error.message}")
                return
            self.cache.set(cache_key, links)

        self._metrics.stats.links_extracted += len(links)

        for link in links:
            resolved = resolve(link.href, url)
            if resolved is None:
                continue

            reason = scope.check(resolved)
            if reason is not None:
                self._metrics.stats.urls_excluded += 1
                logger.debug(f"Skipping {resolved}: {reason}")
                continue

            try:
                child = normalize(resolved)
            except URLNormalizationError:
                continue

            if not frontier.has_capacity():
                break

            if frontier.discover(child, task.depth + 1, parent_url=url):
                logger.debug(f"Discovered {child} at depth {task.depth + 1}")

    async def _fetch_links(self, url: str) -> List[DiscoveredLink]:
        """Load ``url`` in a fresh page and extract its anchors."""
        page = await self.render_provider.new_page()
        try:
            for hook in self.pre_navigation_hooks:
                await hook(page)

            response: NavigationResponse = await page.navigate(url, self.config.page_timeout)
            if response.is_error:
                raise NavigationError.from_status(url, response.status, response.status_text)

            if self.config.page_load_delay > 0:
                await asyncio.sleep(self.config.page_load_delay)

            try:
                await page.wait_for_load_state("networkidle", self.config.network_idle_timeout)
            except Exception as e:
                logger.debug(f"Network idle wait timed out for {url}, continuing: {e}")

            for hook in self.post_load_hooks:
                await hook(page, url)

            return await self.link_discovery.extract_links(page)
        finally:
            await self._release_page(page)

    async def _release_page(self, page: PageHandle) -> None:
        if self.config.keep_pages_open:
            self._retained_pages.append(page)
            return
        try:
            await page.close()
        except Exception as e:
            logger.error(f"Error closing page: {e}")

    async def cleanup(self) -> None:
        """Close retained pages and drop cached links.

        The render provider is stopped by its owner, not here.
        """
        if self._retained_pages:
            pages, self._retained_pages = self._retained_pages, []
            outcomes = await asyncio.gather(*(page.close() for page in pages), return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error(f"Error closing retained page: {outcome}")
            logger.info(f"Closed {len(pages)} retained pages")

        self.cache.clear()
        logger.info("Crawler cleanup completed")

    async def health_check(self) -> bool:
        try:
            return await self.render_provider.health_check()
        except Exception as e:
            logger.error(f"Crawler health check failed: {e}")
            return False

    @property
    def discovered_urls(self) -> List[str]:
        return self._frontier.discovered if self._frontier else []

    @property
    def visited_urls(self) -> set:
        return self._frontier.visited if self._frontier else set()

    @property
    def failed_urls(self) -> set:
        return self._frontier.failed if self._frontier else set()

    def get_metrics(self) -> CrawlMetrics:
        """Get metrics of the current or last crawl."""
        return self._metrics

    def get_stats(self) -> Dict[str, Any]:
        """Get detailed statistics from all crawler components."""
        stats = {
            "crawler": self._metrics.export_summary(),
            "rate_limiter": self.rate_limiter.get_stats(),
            "cache": self.cache.get_stats(),
            "retained_pages": len(self._retained_pages),
        }
        if self._frontier:
            stats["frontier"] = self._frontier.get_stats()
        if self._scope_matcher:
            stats["scope_matcher"] = self._scope_matcher.get_scope_info()
        return stats
