"""
Correlation of outbound requests with their eventual response or error.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .errors import DuplicateIdError
from .message import ErrorResponse, RequestId, Response


@dataclass
class PendingRequest:
    """Continuations for one outstanding request."""

    request_id: RequestId
    on_resolve: Callable[[Response], None]
    on_reject: Callable[[ErrorResponse], None]
    method: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)


class RequestCorrelator:
    """
    Table of in-flight requests keyed by id.

    Every id is added at most once and removed at most once. Entries are
    removed before their continuation runs, so a continuation that sends a
    new request never observes its own stale entry.
    """

    def __init__(self):
        self._pending: Dict[RequestId, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: RequestId) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> List[RequestId]:
        return list(self._pending)

    def register(
        self,
        request_id: RequestId,
        on_resolve: Callable[[Response], None],
        on_reject: Callable[[ErrorResponse], None],
        method: Optional[str] = None,
    ) -> PendingRequest:
        """
        Track a new outstanding request.

        Raises:
            DuplicateIdError: if request_id is already pending
        """
        if request_id in self._pending:
            raise DuplicateIdError(request_id)
        entry = PendingRequest(
            request_id=request_id,
            on_resolve=on_resolve,
            on_reject=on_reject,
            method=method,
        )
        self._pending[request_id] = entry
        return entry

    def resolve(self, response: Response) -> bool:
        """Settle the matching entry; unknown ids are dropped silently."""
        entry = self._pending.pop(response.id, None)
        if entry is None:
            return False
        entry.on_resolve(response)
        return True

    def reject(self, error: ErrorResponse) -> bool:
        """Reject the matching entry; unknown ids are dropped silently."""
        entry = self._pending.pop(error.id, None)
        if entry is None:
            return False
        entry.on_reject(error)
        return True

    def reject_all(self, error: ErrorResponse) -> int:
        """Drain the table, rejecting every entry with the same error."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            entry.on_reject(error)
        return len(entries)

    def discard(self, request_id: RequestId) -> Optional[PendingRequest]:
        """Forget an entry without settling it."""
        return self._pending.pop(request_id, None)
