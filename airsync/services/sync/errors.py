"""
Sync error taxonomy

- HttpStatusError: the transport got a structured (non-2xx) response
- FetchPageError: fatal, non-429 failure of one page, with full context
- TaskTimeoutError: a queued task ran past the queue's timeout
- TransformError: the parse/transform step failed
- CycleInProgressError: a second cycle was started while one is running
- InvalidTransitionError: illegal status state change

Rate-limit responses (429) never leave the fetcher as errors; they are
handled by pausing the queue and re-issuing the page.
"""
import json
from typing import Any, Optional


class SyncError(Exception):
    """Base class for sync errors. `when` names the cycle phase."""

    when: Optional[str] = None


class HttpStatusError(SyncError):
    """Structured HTTP failure returned by a transport."""

    def __init__(self, status_code: int, body: Any = None, url: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status_code}" + (f" for {url}" if url else ''))


class FetchPageError(SyncError):
    """A page request failed with a non rate-limit status."""

    when = 'fetching'

    def __init__(
        self,
        resource: str,
        page: int,
        status_code: int,
        body: Any = None,
        original_error: Optional[BaseException] = None
    ):
        self.resource = resource
        self.page = page
        self.status_code = status_code
        self.body = body
        self.original_error = original_error
        super().__init__(
            f"Table {resource} page {page}: Failure "
            f"(status {status_code}: {_describe_body(body, status_code)})."
        )


class TaskTimeoutError(SyncError):
    """A queued task exceeded the per-task timeout."""

    def __init__(self, timeout: float, name: Optional[str] = None):
        self.timeout = timeout
        label = f"Task {name}" if name else "Task"
        super().__init__(f"{label} timed out after {timeout:g}s")


class TransformError(SyncError):
    """The transform collaborator failed while parsing the snapshot."""

    when = 'parsing'


class CycleInProgressError(SyncError):
    """Only one fetch cycle may run at a time."""


class InvalidTransitionError(SyncError):
    """A status transition that the state machine does not allow."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition: {current} -> {target}")


def _describe_body(body: Any, status_code: int) -> str:
    if body in (None, ''):
        return json.dumps(status_code)
    try:
        return json.dumps(body, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(body)
