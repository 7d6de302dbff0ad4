"""Background status poller and completion collectors.

The DS2490 reports command completion and errors only through its
interrupt endpoint. One poller thread reads that endpoint continuously,
tags each sample with a sequence number, and broadcasts it to
subscribed listeners. A FeedbackCollector is the consumer used by
synchronous callers to wait for "idle" or "result available" after
issuing commands.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from ..errors import OneWireError, TransportFault
from .feedback import CompoundResult, DeviceStatus, Feedback
from .vendor import VendorCommands

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0  # seconds


class FeedbackListener(Protocol):
    """Receiver of poller broadcasts. Called on the poller thread."""

    def on_feedback(self, feedback: Feedback) -> None:
        ...

    def on_failure(self, error: OneWireError) -> None:
        ...


class StatusPoller:
    """Single producer of DeviceStatus samples.

    The thread starts with the first subscriber and stops when the last
    one leaves. Sequence numbers are taken when a read starts, so a
    sample numbered at or above a baseline recorded after issuing a
    command reflects the state after that command was queued.

    Args:
        vendor: Command encoder whose interrupt endpoint is polled.
        on_ep0_full: Called on the poller thread when the chip reports a
            full EP0 FIFO.
    """

    def __init__(
        self,
        vendor: VendorCommands,
        on_ep0_full: Callable[[], None] | None = None,
    ) -> None:
        self._vendor = vendor
        self._on_ep0_full = on_ep0_full
        self._listeners: list[FeedbackListener] = []
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._next_seq = 0
        self.last_status: DeviceStatus | None = None
        self.failure: OneWireError | None = None

    @property
    def next_sequence(self) -> int:
        """Sequence number the next read will carry."""
        with self._lock:
            return self._next_seq

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def subscribe(self, listener: FeedbackListener) -> None:
        with self._lock:
            self._listeners.append(listener)
            failure = self.failure
            if self._thread is None and failure is None:
                self._start()
        if failure is not None:
            listener.on_failure(failure)

    def unsubscribe(self, listener: FeedbackListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if self._listeners:
                return
            thread = self._thread
            self._thread = None
            self._stop.set()
            self._vendor.bind_status_thread(None)
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _start(self) -> None:
        self._stop = threading.Event()
        thread = threading.Thread(
            target=self._run, args=(self._stop,), name="ds2490-status", daemon=True
        )
        self._vendor.bind_status_thread(thread)
        self._thread = thread
        thread.start()
        _LOGGER.debug("status poller started")

    def _run(self, stop: threading.Event) -> None:
        interval = self._vendor.poll_interval_ms / 1000.0
        while not stop.is_set():
            with self._lock:
                seq = self._next_seq
                self._next_seq += 1
            try:
                feedback = self._vendor.read_feedback(seq)
                if feedback is not None:
                    self._publish(feedback)
            except OneWireError as e:
                _LOGGER.warning("status poller stopped: %s", e)
                self._fail(e)
                return
            stop.wait(interval)
        _LOGGER.debug("status poller stopped")

    def _publish(self, feedback: Feedback) -> None:
        self.last_status = feedback.status
        if feedback.status.ep0_fifo_full and self._on_ep0_full is not None:
            _LOGGER.warning("EP0 FIFO full: %s", feedback.status)
            self._on_ep0_full()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener.on_feedback(feedback)

    def _fail(self, error: OneWireError) -> None:
        with self._lock:
            self.failure = error
            listeners = list(self._listeners)
            self._thread = None
        for listener in listeners:
            listener.on_failure(error)


class FeedbackCollector:
    """Collects feedback for one logical operation.

    Subscribe (enter the context) before issuing commands so no result
    is missed; call wait_*() after issuing them. Device-detected
    announcements never count as results.

    Example::

        with FeedbackCollector(poller, vendor) as collector:
            vendor.block_io(len(chunk))
            collector.wait_idle()
        if collector.result.has_error: ...
    """

    def __init__(
        self,
        poller: StatusPoller,
        vendor: VendorCommands,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._poller = poller
        self._vendor = vendor
        self.timeout = timeout
        self._cond = threading.Condition()
        self.result = CompoundResult()
        self.latest: DeviceStatus | None = None
        self._failure: OneWireError | None = None

    def __enter__(self) -> FeedbackCollector:
        self._poller.subscribe(self)
        return self

    def __exit__(self, *exc: object) -> None:
        self._poller.unsubscribe(self)

    # FeedbackListener

    def on_feedback(self, feedback: Feedback) -> None:
        with self._cond:
            self.latest = feedback.status
            for result in feedback.results:
                self.result.add(result)
            self._cond.notify_all()

    def on_failure(self, error: OneWireError) -> None:
        with self._cond:
            self._failure = error
            self._cond.notify_all()

    # waiting

    def wait_idle(self, timeout: float | None = None) -> DeviceStatus:
        """Wait for a fresh sample showing the chip idle."""
        return self._wait(
            "idle", lambda s, base: s is not None and s.seq >= base and s.idle, timeout
        )

    def wait_result(self, timeout: float | None = None) -> DeviceStatus | None:
        """Wait until at least one result byte has been collected."""
        return self._wait(
            "result", lambda s, base: self.result.num_results > 0, timeout
        )

    def wait_result_or_idle(self, timeout: float | None = None) -> DeviceStatus | None:
        return self._wait(
            "result or idle",
            lambda s, base: self.result.num_results > 0
            or (s is not None and s.seq >= base and s.idle),
            timeout,
        )

    def wait_state(self, timeout: float | None = None) -> DeviceStatus:
        """Wait for any sample taken after this call."""
        return self._wait(
            "state", lambda s, base: s is not None and s.seq >= base, timeout
        )

    def _wait(
        self,
        what: str,
        predicate: Callable[[DeviceStatus | None, int], bool],
        timeout: float | None,
    ) -> DeviceStatus | None:
        baseline = self._poller.next_sequence
        limit = self.timeout if timeout is None else timeout
        with self._cond:
            done = self._cond.wait_for(
                lambda: self._failure is not None or predicate(self.latest, baseline),
                limit,
            )
            if self._failure is not None:
                raise self._failure
            if not done:
                raise TransportFault(
                    f"Timed out after {limit:.1f}s waiting for {what}",
                    command=self._vendor.last_command,
                    status=self.latest or self._poller.last_status,
                )
            return self.latest
