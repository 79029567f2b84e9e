"""Bounded-concurrency batch execution with ordered results."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Iterator, Mapping

from ._debug import DebugInfo, DebugOutput
from .config import Options
from .exceptions import HTTPClientError
from .models import Response
from .request import Request
from .retry import MAX_RETRY_ROUNDS
from .transport.base import MULTI_OK, POLL_ERROR, BaseTransport, MultiHandle


class BatchScheduler:
    """Runs queued requests in windows of at most `concurrency` at a time.

    Each window (round) is submitted to the transport's concurrent primitive
    as a whole. Failed requests of the round are resubmitted on their own
    until none is left to retry, and only then is the next window drained
    from the queue. Slot i of every round uses pooled wrapper i, so handles
    are reused across rounds. Responses come out in enqueue order.

    Example:
        scheduler = BatchScheduler(transport, concurrency=3)
        for url in urls:
            scheduler.enqueue("GET", url)
        for response in scheduler.run_all():
            print(response.status_code)
    """

    def __init__(
        self,
        transport: BaseTransport,
        base_options: Mapping[str, Any] | None = None,
        concurrency: int = 6,
        poll_interval: float = 0.5,
        poll_error_sleep: float = 0.001,
        debug: DebugOutput | None = None,
    ):
        """Initialize the scheduler.

        Args:
            transport: Transport providing handles and the concurrent primitive.
            base_options: Options merged under every enqueued request.
            concurrency: Maximum requests in flight, at least 1.
            poll_interval: Longest single wait for a round to make progress.
            poll_error_sleep: Sleep when the poll itself fails.
            debug: Verbose output for every attempt.
        """
        self.transport = transport
        self.base_options = dict(base_options or {})
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.poll_error_sleep = poll_error_sleep
        self._debug = debug
        self._queue: deque[Options] = deque()
        self._pool: list[Request] = []
        self._lock = threading.Lock()
        self._running = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._running

    def enqueue(self, method: str, url: str, **options: Any) -> None:
        """Queue a request. Nothing is sent before run_all().

        Raises:
            ConfigurationError: If the options are invalid.
        """
        options["method"] = method
        options["url"] = url
        self._queue.append(Options.merge(self.base_options, options))

    def run_all(self) -> Iterator[Response]:
        """Execute every queued request and yield responses in enqueue order.

        Raises:
            HTTPClientError: If another run of this scheduler is active.
            TransportError: If a pooled handle was closed. Transfer failures,
                unexpected ones included, are reported on the responses.
        """
        with self._lock:
            if self._running:
                raise HTTPClientError("Batch is already running")
            self._running = True

        mh = self.transport.multi_create(self.concurrency)
        try:
            while self._queue:
                size = min(self.concurrency, len(self._queue))
                window = [self._queue.popleft() for _ in range(size)]
                requests = self._acquire(size)
                for request, options in zip(requests, window):
                    request.reset()
                    request.apply_options(options)
                    self.transport.multi_add(mh, request.handle)

                responses = self._run_round(mh, requests)
                for request, response in zip(requests, responses):
                    request.finalize(response)
                    yield response
        finally:
            self.transport.multi_close(mh)
            with self._lock:
                self._running = False

    def close(self) -> None:
        """Release every pooled handle."""
        for request in self._pool:
            request.close()
        self._pool = []

    def _acquire(self, size: int) -> list[Request]:
        while len(self._pool) < size:
            self._pool.append(Request(self.transport))
        return self._pool[:size]

    def _run_round(self, mh: MultiHandle, requests: list[Request]) -> list[Response]:
        responses: list[Response | None] = [None] * len(requests)
        pending = list(range(len(requests)))
        rounds = 0
        while pending:
            self._wait(mh)

            failed: list[int] = []
            for index in pending:
                request = requests[index]
                self.transport.multi_remove(mh, request.handle)
                response = request.execute(from_concurrent_round=True)
                responses[index] = response
                will_retry = rounds < MAX_RETRY_ROUNDS and request.can_retry()
                if self._debug is not None and self._debug.enabled:
                    self._debug.log_attempt(
                        DebugInfo.from_attempt(request, response, will_retry, slot=index)
                    )
                if will_retry:
                    failed.append(index)

            for index in failed:
                requests[index].prepare_retry()
                self.transport.multi_add(mh, requests[index].handle)
            pending = failed
            rounds += 1

        return responses

    def _wait(self, mh: MultiHandle) -> None:
        """Block until no handle of the round is running.

        A failing executor ends the wait early; each handle is then judged on
        what it recorded, so unfinished ones go through the retry decision.
        """
        while True:
            status, active = self.transport.multi_exec(mh)
            if status != MULTI_OK or not active:
                return
            if self.transport.multi_poll(mh, self.poll_interval) == POLL_ERROR:
                time.sleep(self.poll_error_sleep)
