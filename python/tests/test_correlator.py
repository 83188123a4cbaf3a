"""
Tests for RequestCorrelator.
"""

import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from codexlink.core.correlator import RequestCorrelator
from codexlink.core.errors import DuplicateIdError
from codexlink.core.message import ErrorObject, ErrorResponse, Response


class Recorder:
    """Collects continuation calls."""

    def __init__(self):
        self.resolved = []
        self.rejected = []

    def resolve(self, response):
        self.resolved.append(response)

    def reject(self, error):
        self.rejected.append(error)


class TestRequestCorrelator:
    """Test correlating replies with pending requests."""

    def test_register_and_resolve(self):
        """A response settles the matching entry exactly once."""
        correlator = RequestCorrelator()
        recorder = Recorder()
        correlator.register(1, recorder.resolve, recorder.reject, method="initialize")

        assert 1 in correlator
        assert len(correlator) == 1

        assert correlator.resolve(Response(id=1, result={"ok": True})) is True
        assert recorder.resolved == [Response(id=1, result={"ok": True})]
        assert recorder.rejected == []
        assert 1 not in correlator

        # Second reply with the same id is dropped
        assert correlator.resolve(Response(id=1, result=None)) is False
        assert len(recorder.resolved) == 1

    def test_reject(self):
        """An error reply rejects the matching entry."""
        correlator = RequestCorrelator()
        recorder = Recorder()
        correlator.register("abc", recorder.resolve, recorder.reject)

        error = ErrorResponse(id="abc", error=ErrorObject(code=-1, message="boom"))
        assert correlator.reject(error) is True
        assert recorder.rejected == [error]
        assert len(correlator) == 0

    def test_unknown_id_dropped(self):
        """Replies with no pending entry are ignored."""
        correlator = RequestCorrelator()
        recorder = Recorder()
        correlator.register(1, recorder.resolve, recorder.reject)

        assert correlator.resolve(Response(id=99)) is False
        assert correlator.reject(ErrorResponse(id=99, error=ErrorObject(1, "x"))) is False
        assert recorder.resolved == []
        assert recorder.rejected == []
        assert len(correlator) == 1

    def test_int_and_string_ids_are_distinct(self):
        """1 and "1" are different keys."""
        correlator = RequestCorrelator()
        recorder = Recorder()
        correlator.register(1, recorder.resolve, recorder.reject)

        assert correlator.resolve(Response(id="1")) is False
        assert correlator.resolve(Response(id=1)) is True

    def test_duplicate_registration(self):
        """Registering a pending id twice raises."""
        correlator = RequestCorrelator()
        correlator.register(1, lambda r: None, lambda e: None)
        with pytest.raises(DuplicateIdError) as exc_info:
            correlator.register(1, lambda r: None, lambda e: None)
        assert exc_info.value.request_id == 1

    def test_entry_removed_before_continuation(self):
        """The continuation never observes its own entry."""
        correlator = RequestCorrelator()
        seen = []

        def on_resolve(response):
            seen.append(response.id in correlator)
            # Reusing the id from inside the continuation is allowed
            correlator.register(response.id, lambda r: None, lambda e: None)

        correlator.register(5, on_resolve, lambda e: None)
        correlator.resolve(Response(id=5))

        assert seen == [False]
        assert 5 in correlator

    def test_reject_all(self):
        """reject_all drains the table and rejects each entry."""
        correlator = RequestCorrelator()
        recorder = Recorder()
        for request_id in (1, 2, 3):
            correlator.register(request_id, recorder.resolve, recorder.reject)

        disposed = ErrorResponse(id=-1, error=ErrorObject(-1, "App server bridge disposed"))
        assert correlator.reject_all(disposed) == 3
        assert recorder.rejected == [disposed, disposed, disposed]
        assert len(correlator) == 0
        assert correlator.reject_all(disposed) == 0

    def test_reject_all_continuation_may_register(self):
        """Entries registered during reject_all survive the drain."""
        correlator = RequestCorrelator()

        def on_reject(error):
            correlator.register(100, lambda r: None, lambda e: None)

        correlator.register(1, lambda r: None, on_reject)
        correlator.reject_all(ErrorResponse(id=-1, error=ErrorObject(-1, "x")))

        assert correlator.pending_ids() == [100]

    def test_discard(self):
        """discard forgets an entry without settling it."""
        correlator = RequestCorrelator()
        recorder = Recorder()
        correlator.register(1, recorder.resolve, recorder.reject, method="m")

        entry = correlator.discard(1)
        assert entry is not None
        assert entry.method == "m"
        assert correlator.discard(1) is None
        assert recorder.resolved == [] and recorder.rejected == []
