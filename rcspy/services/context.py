"""Shared resources of an analysis session.

One ``AnalysisContext`` is built at start-up and handed to the orchestrator,
extractor and probes. It owns the result cache, the HTTP client and the worker
pool, and opens and closes them together.
"""

import logging

import httpx

from rcspy.config import Settings, get_settings
from rcspy.services.result_cache import ResultCache
from rcspy.services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

USER_AGENT = "rcspy/0.1.0"


class AnalysisContext:
    """Owns the cache, HTTP client and worker pool of one session.

    Attributes:
        settings: Scanner settings.
        cache: Result cache rooted at ``settings.cache_dir``.
        pool: Worker pool for archive extraction.
        client: Shared async HTTP client; available once opened.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the context without acquiring any resource.

        Args:
            settings: Scanner settings; defaults to the cached settings.
            transport: Optional HTTP transport, used to mock remote services.
        """
        self.settings = settings or get_settings()
        self.cache = ResultCache(self.settings.cache_dir)
        self.pool = WorkerPool(
            kind=self.settings.worker_pool_kind,
            max_workers=self.settings.max_parallel_analysis,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Analysis context is not open")
        return self._client

    async def open(self) -> "AnalysisContext":
        self.cache.open()
        self.pool.open()
        self._client = httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        logger.info(f"Analysis context opened (cache: {self.settings.cache_dir})")
        return self

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.pool.close()
        self.cache.close()
        logger.info("Analysis context closed")

    async def __aenter__(self) -> "AnalysisContext":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
