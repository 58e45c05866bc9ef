"""
Paginated token fetching

Pages are read strictly in cursor order. Oversized responses shrink the
batch size and retry the same cursor; undecodable pages keep the cursor and
leave abandonment to the per-project retry policy; an indexer answering with
the wrong content type is treated as having nothing (more) to give.
"""

from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .clients.indexer import IndexerClient
from .config import Config
from .errors import (
    CursorStalledError,
    DecodeError,
    InvalidContentTypeError,
    MessageTooLargeError,
)
from .models import Project, Token, TokenPage

PageHandler = Callable[[Project, List[Token]], Awaitable[object]]


class TokenFetcher:
    """Streams every token with metadata from a project indexer"""

    def __init__(
        self,
        batch_size: int = 5000,
        shrink_step: int = 500,
        retry_attempts: int = 3,
        retry_delay: float = 5.0,
    ):
        self.batch_size = batch_size
        self.shrink_step = shrink_step
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        # Batch size each project ended up with during its current sweep
        self._sizes: Dict[str, int] = {}

    @classmethod
    def from_config(cls, config: Config) -> "TokenFetcher":
        return cls(
            batch_size=config.token_fetch_batch_size,
            shrink_step=config.batch_shrink_step,
            retry_attempts=config.retry_attempts,
            retry_delay=config.retry_delay,
        )

    def current_batch_size(self, project: Project) -> int:
        return self._sizes.get(project.id, self.batch_size)

    async def fetch_page(
        self,
        client: IndexerClient,
        cursor: Optional[str],
        batch_size: int,
    ) -> TokenPage:
        """
        Fetch one page, absorbing the indexer errors that have a page-level answer.

        The returned page's limit is the batch size that was finally used.
        """
        project = client.project.id
        size = batch_size
        while True:
            try:
                return await client.get_tokens(None, None, size, cursor)
            except MessageTooLargeError as e:
                size -= self.shrink_step
                if size <= 0:
                    logger.error(f"[{project}] Page at cursor {cursor} too large even at the smallest batch size, giving up on it: {e}")
                    return TokenPage(tokens=[], next_cursor=None, limit=0)
                logger.warning(f"[{project}] Page too large, retrying cursor {cursor} with batch size {size}")
            except DecodeError as e:
                logger.warning(f"[{project}] Cannot decode page at cursor {cursor}: {e}")
                return TokenPage(tokens=[], next_cursor=cursor, limit=size, stalled=True)
            except InvalidContentTypeError as e:
                logger.info(f"[{project}] Indexer unavailable or incompatible, treating as empty: {e}")
                return TokenPage(tokens=[], next_cursor=None, limit=size)

    async def iter_pages(self, client: IndexerClient, project: Project) -> AsyncIterator[TokenPage]:
        """Yield non-empty pages of tokens with metadata until the cursor runs out"""
        cursor: Optional[str] = None
        while True:
            page = await self.fetch_page(client, cursor, self.current_batch_size(project))
            if page.limit > 0:
                self._sizes[project.id] = page.limit

            if page.stalled or (cursor is not None and page.next_cursor == cursor):
                raise CursorStalledError(f"No progress past cursor {cursor}", project=project.id)

            tokens = [t for t in page.tokens if t.has_metadata]
            dropped = len(page.tokens) - len(tokens)
            if dropped:
                logger.debug(f"[{project.id}] Dropped {dropped} tokens without metadata")
            if tokens:
                yield TokenPage(tokens=tokens, next_cursor=page.next_cursor, limit=page.limit)

            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def _stream(self, client: IndexerClient, project: Project, handle: PageHandler) -> int:
        count = 0
        async for page in self.iter_pages(client, project):
            await handle(project, page.tokens)
            count += len(page.tokens)
        return count

    async def sweep_project(self, client: IndexerClient, project: Project, handle: PageHandler) -> bool:
        """
        Run the whole stream for a project, restarting it on failure.

        Returns False once every attempt failed; never raises for fetch
        problems so one project cannot take down the others.
        """
        self._sizes.pop(project.id, None)

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                f"[{project.id}] Sweep attempt {retry_state.attempt_number} failed: "
                f"{retry_state.outcome.exception()}; retrying in {self.retry_delay}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(Exception),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    count = await self._stream(client, project, handle)
        except Exception as e:
            logger.error(f"[{project.id}] Giving up on this sweep after {self.retry_attempts + 1} attempts: {e}")
            return False

        logger.info(f"[{project.id}] Sweep finished, {count} tokens with metadata")
        return True
