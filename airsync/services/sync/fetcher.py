"""
Paginated Fetcher - fetch every page of every table through the shared queue

Each page request is an explicit PageTask scheduled on the RateLimitedQueue.
A page that carries a continuation token schedules the next page; a page
that hits the rate limit pauses the queue, waits, and schedules itself again
as a fresh task. Any other failure is fatal for the cycle.

Failure classification:
- no structured response (connection error, timeout): fatal, propagated unchanged
- HTTP status other than 429: fatal, wrapped in FetchPageError
- HTTP 429: recoverable, never surfaced to the caller
"""
import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ...models import Record, ResourceSpec
from ...models.status import FETCHING, RATELIMITED
from ...utils.logger import get_logger
from ...utils.serialization import camel_case, isoformat_z, utc_now
from .errors import FetchPageError, HttpStatusError
from .transport import build_modified_after_formula

logger = get_logger('fetcher')

RATE_LIMIT_STATUS = 429


@dataclass(frozen=True)
class PageTask:
    """One page request: (resource, page number, continuation token)."""

    resource: ResourceSpec
    page: int = 1
    offset: Optional[str] = None
    attempt: int = 1

    @property
    def label(self) -> str:
        return f"{self.resource.name}#{self.page}"

    def next_page(self, offset: str) -> 'PageTask':
        return PageTask(resource=self.resource, page=self.page + 1, offset=offset)

    def retry(self) -> 'PageTask':
        return replace(self, attempt=self.attempt + 1)


@dataclass
class CycleContext:
    """State of one fetch cycle, owned by the cycle controller."""

    resources: List[ResourceSpec]
    cursor: Optional[datetime] = None
    results: Dict[str, List[Record]] = field(default_factory=dict)
    record_count: int = 0
    pages_fetched: int = 0
    rate_limit_hits: int = 0
    error: Optional[BaseException] = None

    @property
    def aborted(self) -> bool:
        return self.error is not None

    def add_records(self, key: str, records: List[Record]) -> int:
        """Append one page of records. Returns the running total."""
        self.results.setdefault(key, []).extend(records)
        self.record_count += len(records)
        self.pages_fetched += 1
        return self.record_count

    def fail(self, err: BaseException) -> bool:
        """Record a fatal error. Only the first one is kept."""
        if self.error is not None:
            return False
        self.error = err
        return True


class PaginatedFetcher:
    """Drive all page requests of a cycle through the RateLimitedQueue.

    Example:
        >>> fetcher = PaginatedFetcher(transport, queue, status, broadcaster, api_key='key...')
        >>> context = CycleContext(resources=[ResourceSpec('Widgets')])
        >>> await fetcher.fetch_all(context)
        >>> context.results['widgets']
    """

    RATE_LIMIT_DELAY = 30.0

    def __init__(
        self,
        transport,
        queue,
        status,
        broadcaster,
        api_key: str,
        get_table_key: Callable[[str], str] = camel_case,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
        debug: bool = False
    ):
        """Initialize the fetcher.

        Args:
            transport: Object with fetch(table_name, query, api_key) -> {'records', 'offset'}
            queue: Shared RateLimitedQueue
            status: StatusMachine receiving ratelimited/fetching transitions
            broadcaster: Receives progress notifications
            api_key: Credential passed to the transport
            get_table_key: Maps a table name to its result key
            rate_limit_delay: Seconds to pause the queue after a 429
            debug: Log every request at INFO level
        """
        self.transport = transport
        self.queue = queue
        self.status = status
        self.broadcaster = broadcaster
        self.api_key = api_key
        self.get_table_key = get_table_key
        self.rate_limit_delay = rate_limit_delay
        self.debug = debug
        self._trace = logger.info if debug else logger.debug

    def build_query(self, task: PageTask, cursor: Optional[datetime]) -> Dict[str, str]:
        """Base query + continuation token + "modified after cursor" filter."""
        query = dict(task.resource.query or {})
        if task.offset:
            query['offset'] = task.offset
        if cursor is not None:
            query['filterByFormula'] = build_modified_after_formula(cursor)
        return query

    async def fetch_all(self, context: CycleContext) -> None:
        """Fetch every page of every resource into `context.results`.

        Returns once the queue is idle, follow-up pages and retries included.

        Raises:
            The first fatal error of the cycle
        """
        for resource in context.resources:
            self.schedule(context, PageTask(resource=resource))

        await self.queue.on_idle()

        if context.error is not None:
            raise context.error

        logger.info(
            f"[Fetcher] Fetched {context.record_count} records in {context.pages_fetched} pages "
            f"from {len(context.resources)} tables ({context.rate_limit_hits} rate limits)"
        )

    def schedule(self, context: CycleContext, task: PageTask) -> None:
        future = self.queue.add(lambda: self.fetch_page(context, task), name=task.label)
        future.add_done_callback(lambda f: self._on_task_done(context, task, f))

    async def fetch_page(self, context: CycleContext, task: PageTask) -> None:
        """Fetch one page, then schedule the next page or a retry."""
        if context.aborted:
            return

        name = task.resource.name
        query = self.build_query(task, context.cursor)
        self._trace(f"[Fetcher] Table {name} page {task.page} (attempt {task.attempt})")
        if context.cursor is not None:
            self._trace(f"[Fetcher]   From date {isoformat_z(context.cursor)}")

        try:
            page = await asyncio.to_thread(self.transport.fetch, name, query, self.api_key)
        except HttpStatusError as err:
            if err.status_code == RATE_LIMIT_STATUS:
                await self._wait_out_rate_limit(context, task)
                return
            error = FetchPageError(name, task.page, err.status_code, err.body, original_error=err)
            error.__cause__ = err
            self._fail(context, task, error)
            return
        except Exception as err:
            self._fail(context, task, err)
            return

        if context.aborted:
            return

        records = [_to_record(item) for item in page.get('records') or []]
        total = context.add_records(self.get_table_key(name), records)
        self.broadcaster.publish_progress(total)

        offset = page.get('offset')
        if offset:
            self._trace(f"[Fetcher] Table {name} page {task.page}: Got {len(records)} records. Queuing next page")
            self.schedule(context, task.next_page(offset))
        else:
            self._trace(f"[Fetcher] Table {name} page {task.page}: Done with {len(records)} records")

    async def _wait_out_rate_limit(self, context: CycleContext, task: PageTask) -> None:
        context.rate_limit_hits += 1
        resumes_at = utc_now() + timedelta(seconds=self.rate_limit_delay)
        self.status.transition(RATELIMITED, {
            'resumes_at': isoformat_z(resumes_at),
            'table': task.resource.name,
            'page': task.page,
        })
        self.queue.pause()
        logger.warning(
            f"[Fetcher] Rate limited on {task.label}, pausing queue for {self.rate_limit_delay:g}s"
        )

        try:
            await asyncio.sleep(self.rate_limit_delay)

            if context.aborted:
                return

            self._trace(f"[Fetcher] Table {task.resource.name} page {task.page}: Requeuing")
            self.schedule(context, task.retry())
            self.status.transition(FETCHING)
        finally:
            # A cancelled wait must not leave the queue paused
            self.queue.start()

    def _on_task_done(self, context: CycleContext, task: PageTask, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        err = future.exception()
        if err is not None:
            self._fail(context, task, err)

    def _fail(self, context: CycleContext, task: PageTask, err: BaseException) -> None:
        if not context.fail(err):
            return
        logger.error(f"[Fetcher] {task.label} failed: {err}")
        # Nothing else of this cycle should hit the network
        self.queue.clear()
        self.queue.start()


def _to_record(item: Any) -> Record:
    if isinstance(item, Record):
        return item
    return Record.from_api(item)
