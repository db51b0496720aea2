"""
Airtable Transport - pooled HTTP access to the Airtable REST API

Wraps a requests.Session with a connection-pooling adapter so the many small
page requests of a cycle reuse TCP/TLS connections. The adapter only retries
connection-level failures; HTTP statuses (429 included) are reported to the
caller as HttpStatusError and handled by the fetcher.
"""
import threading
from datetime import datetime
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from ...utils.logger import get_logger
from ...utils.serialization import isoformat_z
from .errors import HttpStatusError

logger = get_logger('transport')


def build_modified_after_formula(cursor: datetime) -> str:
    """
    Airtable formula selecting records modified strictly after `cursor`.

    The instant is sent in UTC with millisecond precision, e.g.
    IS_AFTER(LAST_MODIFIED_TIME(), '2024-03-01T08:15:00.000Z')
    """
    return f"IS_AFTER(LAST_MODIFIED_TIME(), '{isoformat_z(cursor)}')"


class AirtableTransport:
    """Fetch one page of records from an Airtable table.

    Any object exposing the same fetch() signature can replace it.

    Example:
        >>> transport = AirtableTransport(base_id='appXXXX')
        >>> page = transport.fetch('Widgets', {'pageSize': '100'}, api_key='key...')
        >>> page['records'], page['offset']
    """

    DEFAULT_BASE_URL = 'https://api.airtable.com/v0'

    # Connection pool configuration
    POOL_CONNECTIONS = 10
    POOL_MAXSIZE = 15

    def __init__(
        self,
        base_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        session: Optional[requests.Session] = None
    ):
        """Initialize the transport.

        Args:
            base_id: Airtable base id
            base_url: API root URL
            timeout: Per-request timeout in seconds
            max_retries: Connection-level retries (not HTTP statuses)
            session: Pre-built session, mostly for tests
        """
        self.base_id = base_id
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=self.POOL_CONNECTIONS,
                pool_maxsize=self.POOL_MAXSIZE,
                max_retries=max_retries,
                pool_block=False
            )
            session.mount('http://', adapter)
            session.mount('https://', adapter)
        self._session = session

        self._stats = {'requests': 0, 'errors': 0}
        self._stats_lock = threading.Lock()

    def table_url(self, table_name: str) -> str:
        return f"{self.base_url}/{self.base_id}/{quote(table_name)}/"

    def fetch(self, table_name: str, query: Mapping[str, str], api_key: str) -> Dict[str, Any]:
        """GET one page of a table.

        Args:
            table_name: Airtable table name
            query: Query string parameters (offset, filterByFormula, view, ...)
            api_key: Bearer credential

        Returns:
            {'records': [...], 'offset': continuation token or None}

        Raises:
            HttpStatusError: On a non-2xx response
            requests.RequestException: On connection failures and timeouts
        """
        url = self.table_url(table_name)
        with self._stats_lock:
            self._stats['requests'] += 1

        try:
            resp = self._session.get(
                url,
                params=dict(query),
                headers={'Authorization': f'Bearer {api_key}'},
                timeout=self.timeout,
            )
        except requests.RequestException:
            with self._stats_lock:
                self._stats['errors'] += 1
            raise

        if not 200 <= resp.status_code < 300:
            with self._stats_lock:
                self._stats['errors'] += 1
            raise HttpStatusError(resp.status_code, _response_body(resp), url=url)

        payload = resp.json()
        return {
            'records': payload.get('records') or [],
            'offset': payload.get('offset'),
        }

    def get_stats(self) -> Dict:
        """Get request statistics.

        Returns:
            Dictionary with request and error counts
        """
        with self._stats_lock:
            return self._stats.copy()

    def close(self) -> None:
        """Close all pooled connections."""
        self._session.close()
        logger.info("[AirtableTransport] Session closed")


def _response_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or resp.reason
