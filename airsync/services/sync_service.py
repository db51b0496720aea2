"""
Sync Service - one controller per synchronized Airtable base

Runs fetch cycles built from the modular components in services.sync:
- sync.rate_limited_queue: shared request scheduler
- sync.fetcher: paginated, rate-limit aware page fetching
- sync.merger: snapshot merge and cursor computation
- sync.status_log: status log and state machine
"""
import asyncio
import inspect
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..models import Record, ResourceSpec, StatusEvent, SyncState
from ..models.status import ERRORED, FETCHING, IDLE, PARSING, READY, RESET, SUCCESS
from ..utils.logger import get_logger, log_error
from ..utils.serialization import camel_case, isoformat_z, serialize_error
from .status_broadcaster import StatusBroadcaster
from .sync.errors import CycleInProgressError, TransformError
from .sync.fetcher import CycleContext, PaginatedFetcher
from .sync.merger import IncrementalMerger
from .sync.rate_limited_queue import RateLimitedQueue
from .sync.status_log import StatusLog, StatusMachine
from .sync.transport import AirtableTransport

logger = get_logger('sync')

Transform = Callable[[Dict[str, List[Record]]], Any]


def _identity(snapshot):
    return snapshot


class SyncService:
    """Incremental synchronization of a set of Airtable tables.

    A cycle fetches every configured table (only records changed since the
    cursor once a cycle has succeeded), merges the results into the snapshot
    by record id, and hands the snapshot to `parse_tables` when something
    changed or nothing was ever parsed.

    Features:
    - Shared rate limit across tables, pause/resume on 429 responses
    - Status log with a collapsed view and live subscriptions
    - Restorable state (export_state / restore_from)
    - Single active cycle, enforced by a lock

    Example:
        >>> service = SyncService(base_id='appXXXX', api_key='key...',
        ...                       table_settings=[('Widgets', {'view': 'Grid view'})])
        >>> result = asyncio.run(service.fetch_base())
    """

    SETTLE_DELAY = 0.15

    def __init__(
        self,
        base_id: Optional[str] = None,
        api_key: Optional[str] = None,
        table_settings: Iterable[Any] = (),
        get_table_key: Callable[[str], str] = camel_case,
        parse_tables: Optional[Transform] = None,
        restore_from: Union[SyncState, Mapping[str, Any], None] = None,
        debug: bool = False,
        transport=None,
        broadcaster: Optional[StatusBroadcaster] = None,
        base_url: str = AirtableTransport.DEFAULT_BASE_URL,
        http_timeout: float = 30.0,
        http_max_retries: int = 3,
        max_requests_per_sec: int = RateLimitedQueue.MAX_REQUESTS_PER_SEC,
        interval: float = 1.0,
        task_timeout: Optional[float] = RateLimitedQueue.TASK_TIMEOUT,
        rate_limit_delay: float = PaginatedFetcher.RATE_LIMIT_DELAY,
        settle_delay: float = SETTLE_DELAY
    ):
        self.base_id = base_id
        self.api_key = api_key
        self.table_settings = [ResourceSpec.parse(setting) for setting in table_settings]
        self.get_table_key = get_table_key
        self.parse_tables = parse_tables or _identity
        self.debug = debug
        self.settle_delay = settle_delay

        # Support restoring state from a persisted bundle
        if restore_from is None:
            state = SyncState()
        elif isinstance(restore_from, SyncState):
            state = restore_from
        else:
            state = SyncState.from_dict(restore_from)
        self.last_parsed = state.last_parsed
        self.from_date = state.from_date
        self.previous_fetch: Dict[str, List[Record]] = state.previous_fetch

        self.broadcaster = broadcaster or StatusBroadcaster()
        self.log = StatusLog(state.log, broadcaster=self.broadcaster)
        self.machine = StatusMachine(self.log)

        if transport is None:
            if not base_id:
                raise ValueError("base_id is required when no transport is given")
            transport = AirtableTransport(
                base_id,
                base_url=base_url,
                timeout=http_timeout,
                max_retries=http_max_retries,
            )
        self.transport = transport

        self.queue = RateLimitedQueue(
            concurrency=max_requests_per_sec,
            interval_cap=max_requests_per_sec,
            interval=interval,
            timeout=task_timeout,
        )
        self.fetcher = PaginatedFetcher(
            transport=self.transport,
            queue=self.queue,
            status=self.machine,
            broadcaster=self.broadcaster,
            api_key=api_key,
            get_table_key=get_table_key,
            rate_limit_delay=rate_limit_delay,
            debug=debug,
        )

        self._reset_requested = False
        self._cycle_lock = threading.Lock()

        self.machine.mark(READY)

    @classmethod
    def from_config(cls, config_class, **overrides) -> 'SyncService':
        """Build a service from a Config class; keyword arguments win."""
        settings = {
            'base_id': config_class.AIRTABLE_BASE_ID,
            'api_key': config_class.AIRTABLE_API_KEY,
            'table_settings': [(name, {}) for name in config_class.AIRTABLE_TABLES],
            'debug': config_class.SYNC_DEBUG,
            'base_url': config_class.AIRTABLE_API_URL,
            'http_timeout': config_class.HTTP_TIMEOUT,
            'http_max_retries': config_class.HTTP_MAX_RETRIES,
            **config_class.sync_settings(),
        }
        settings.update(overrides)
        return cls(**settings)

    # ==================== Status ====================

    @property
    def status(self) -> Optional[StatusEvent]:
        """Latest status transition (marker events such as reset excluded)."""
        return self.machine.event

    @property
    def state(self) -> str:
        return self.machine.state

    @property
    def collapsed_log(self) -> List[StatusEvent]:
        return self.log.collapsed()

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def reset_requested(self) -> bool:
        return self._reset_requested

    @property
    def snapshot(self) -> Dict[str, List[Record]]:
        """Merged records per table key.

        Each cycle builds a new snapshot and swaps it in, so the returned
        mapping is never mutated afterwards and can be read from any thread.
        """
        return self.previous_fetch

    def subscribe(self, listener) -> Callable[[], None]:
        """Subscribe to status and progress notifications, see StatusBroadcaster."""
        return self.broadcaster.subscribe(listener)

    def request_reset(self) -> None:
        """Discard snapshot and cursor at the start of the next cycle."""
        self._reset_requested = True
        self.machine.mark(RESET)
        logger.info("[SyncService] Reset requested for next cycle")

    def table_counts(self) -> Dict[str, int]:
        snapshot = self.previous_fetch
        return {key: len(records) for key, records in snapshot.items()}

    def get_stats(self) -> Dict:
        stats = {
            'state': self.state,
            'running': self.is_running,
            'reset_requested': self._reset_requested,
            'from_date': isoformat_z(self.from_date) if self.from_date else None,
            'tables': self.table_counts(),
            'queue': self.queue.get_stats(),
        }
        if hasattr(self.transport, 'get_stats'):
            stats['transport'] = self.transport.get_stats()
        return stats

    def export_state(self) -> SyncState:
        """Bundle to persist and later pass back as `restore_from`."""
        snapshot = self.previous_fetch
        return SyncState(
            log=self.log.events(),
            last_parsed=self.last_parsed,
            from_date=self.from_date,
            previous_fetch={key: list(records) for key, records in snapshot.items()},
        )

    def close(self) -> None:
        """Release the transport's pooled connections and end open streams."""
        self.broadcaster.close_streams()
        if hasattr(self.transport, 'close'):
            self.transport.close()

    # ==================== Cycle ====================

    async def fetch_base(self) -> Any:
        """Run one fetch cycle and return the (possibly unchanged) transform result.

        Raises:
            CycleInProgressError: If another cycle is running
            Any fatal fetch or transform error, after it was recorded as errored

        A cancelled cycle is recorded as errored as well before the
        cancellation propagates.
        """
        if not self._cycle_lock.acquire(blocking=False):
            raise CycleInProgressError("A fetch cycle is already running")
        try:
            return await self._run_cycle()
        finally:
            self._cycle_lock.release()

    def start_background_cycle(self) -> threading.Thread:
        """Run one cycle on a worker thread with its own event loop.

        The cycle lock is taken here, before the thread starts, and released
        by the worker when the cycle ends.

        Raises:
            CycleInProgressError: If another cycle is running
        """
        if not self._cycle_lock.acquire(blocking=False):
            raise CycleInProgressError("A fetch cycle is already running")
        thread = threading.Thread(
            target=self._run_in_thread,
            name='airsync-cycle',
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self._cycle_lock.release()
            raise
        return thread

    def _run_in_thread(self) -> None:
        try:
            asyncio.run(self._run_cycle())
        except Exception as e:
            # Already recorded on the status log by the cycle itself
            log_error(e, 'background fetch cycle')
        finally:
            self._cycle_lock.release()

    async def _run_cycle(self) -> Any:
        self.machine.transition(FETCHING)

        if self._reset_requested:
            logger.info("[SyncService] Applying reset: snapshot and cursor cleared")
            self.previous_fetch = {}
            self.from_date = None
            self._reset_requested = False

        context = CycleContext(resources=list(self.table_settings), cursor=self.from_date)
        phase = FETCHING

        try:
            await self.fetcher.fetch_all(context)

            next_cursor = IncrementalMerger.advance_cursor(
                self.from_date,
                IncrementalMerger.newest_modified_date(context.results),
            )
            snapshot = {key: list(records) for key, records in self.previous_fetch.items()}
            created_count, updated_count = IncrementalMerger.merge_cycle(snapshot, context.results)
            self.previous_fetch = snapshot
            total_count = created_count + updated_count

            if total_count > 0 or self.last_parsed is None:
                phase = PARSING
                self.machine.transition(PARSING)
                await asyncio.sleep(self.settle_delay)
                self.last_parsed = await self._parse()

            self.from_date = next_cursor
            self.queue.clear()
            self.machine.transition(SUCCESS, {
                'total_count': total_count,
                'updated_count': updated_count,
                'created_count': created_count,
            })
            self.machine.transition(IDLE)
            logger.info(
                f"[SyncService] Cycle done: {total_count} changes "
                f"({created_count} created, {updated_count} updated), cursor {isoformat_z(next_cursor)}"
            )
            return self.last_parsed

        except asyncio.CancelledError as err:
            # Tasks still in flight must not schedule follow-up pages
            context.fail(err)
            logger.warning(f"[SyncService] Cycle cancelled while {phase}")
            self._abort_cycle(err, phase)
            raise

        except Exception as err:
            logger.error(f"[SyncService] Cycle failed while {phase}: {err}")
            self._abort_cycle(err, phase)
            raise

    def _abort_cycle(self, err: BaseException, phase: str) -> None:
        self.queue.clear()
        self.queue.start()
        self.machine.transition(ERRORED, {'err': serialize_error(err), 'when': phase})

    async def _parse(self) -> Any:
        try:
            result = self.parse_tables(self.previous_fetch)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as err:
            raise TransformError(f"Transform failed: {err}") from err
