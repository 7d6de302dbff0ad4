"""DS2490 USB-to-1-Wire bridge: bus primitives and hardware search.

See the DS2490 datasheet for the command set. Every primitive issues
its vendor command(s) under the adapter lock, waits on a
FeedbackCollector until the chip goes idle, and turns CRC, compare and
short results into ProtocolError.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ..bus.adapter import OneWireAdapter
from ..errors import OneWireError, ProtocolError, TransportFault
from ..rom import ROM_SIZE, RomId
from .feedback import CompoundResult, DeviceStatus, Feedback
from .poller import DEFAULT_TIMEOUT, FeedbackCollector, StatusPoller
from .vendor import SPEED_FLEXIBLE, VendorCommands

_LOGGER = logging.getLogger(__name__)

# Pause between status checks while search data trickles into EP3
_SEARCH_DRAIN_INTERVAL = 0.01


class _PresenceWatcher:
    """Listener kept subscribed while the adapter is open."""

    def __init__(self, adapter: DS2490) -> None:
        self._adapter = adapter

    def on_feedback(self, feedback: Feedback) -> None:
        if any(r.device_detected for r in feedback.results):
            for callback in list(self._adapter._detected_callbacks):
                callback()

    def on_failure(self, error: OneWireError) -> None:
        for callback in list(self._adapter._failure_callbacks):
            callback(error)


class DS2490(OneWireAdapter):
    """1-Wire bus master backed by a DS2490 over USB.

    Args:
        handle: Opened pyusb device, configured, interface 0 claimed with
            the alternate setting given here.
        alt_setting: USB alternate setting (0..3).
        timeout: Seconds to wait for each command to complete.
    """

    def __init__(
        self,
        handle: Any,
        alt_setting: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__()
        self.vendor = VendorCommands(handle, alt_setting)
        self.poller = StatusPoller(self.vendor, on_ep0_full=self._reset_if_free)
        self.timeout = timeout
        self._detected_callbacks: list[Callable[[], None]] = []
        self._failure_callbacks: list[Callable[[OneWireError], None]] = []
        self._watcher = _PresenceWatcher(self)
        self._open = False

    @property
    def packet_size(self) -> int:
        return self.vendor.packet_size

    @property
    def max_search_devices(self) -> int:
        """ROM ids per hardware search round; one block is kept for discrepancy."""
        return self.vendor.packet_size // ROM_SIZE - 1

    # -- lifecycle ---------------------------------------------------------

    def open(self) -> None:
        """Start status polling and presence watching."""
        if not self._open:
            self.poller.subscribe(self._watcher)
            self._open = True

    def close(self) -> None:
        if self._open:
            self._open = False
            self.poller.unsubscribe(self._watcher)

    def __enter__(self) -> DS2490:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def on_device_detected(self, callback: Callable[[], None]) -> None:
        """Register a callback fired (on the poller thread) when a device attaches."""
        self._detected_callbacks.append(callback)

    def on_failure(self, callback: Callable[[OneWireError], None]) -> None:
        """Register a callback fired when status polling fails, e.g. on unplug."""
        self._failure_callbacks.append(callback)

    def _reset_if_free(self) -> None:
        # Runs on the poller thread: never block on the adapter lock, the
        # holder may be waiting for this very thread.
        if not self.lock.acquire(blocking=False):
            _LOGGER.warning("EP0 FIFO full while adapter busy; reset skipped")
            return
        try:
            self.vendor.reset_device()
        finally:
            self.lock.release()

    # -- completion handling -----------------------------------------------

    def _collector(self) -> FeedbackCollector:
        return FeedbackCollector(self.poller, self.vendor, self.timeout)

    def _run_and_wait(
        self,
        issue: Callable[[], None],
        require_result: bool = False,
    ) -> tuple[CompoundResult, DeviceStatus]:
        """Issue commands and block until the chip is idle again.

        Raises:
            ProtocolError: If a result reports CRC, compare or short.
            TransportFault: On timeout or USB failure.
        """
        with self.lock:
            with self._collector() as collector:
                issue()
                if require_result:
                    collector.wait_result()
                status = collector.wait_idle()
            result = collector.result
            if result.has_error:
                raise ProtocolError(
                    f"Command failed: {result}",
                    flags=result,
                    command=self.vendor.last_command,
                    status=status,
                )
            return result, status

    def state(self) -> DeviceStatus:
        """Return a status sample taken after this call."""
        with self._collector() as collector:
            return collector.wait_state()

    # -- primitives --------------------------------------------------------

    def reset_device(self) -> None:
        with self.lock:
            _, status = self._run_and_wait(self.vendor.reset_device)
            self.forget_addressing()
            if not status.buffers_empty:
                raise TransportFault(
                    f"Adapter did not flush its buffers: in={status.inbound_count} "
                    f"out={status.outbound_count}",
                    command=self.vendor.last_command,
                    status=status,
                )

    def reset_bus(
        self,
        speed: int | None = SPEED_FLEXIBLE,
        wait_for_presence: bool = False,
    ) -> bool:
        result, _ = self._run_and_wait(
            lambda: self.vendor.one_wire_reset(
                speed=speed, until_presence=wait_for_presence
            )
        )
        return not result.no_presence

    def write_bit(self, bit: bool) -> None:
        self._run_and_wait(lambda: self.vendor.bit_io(bit, read_back=False))

    def read_bit(self) -> bool:
        with self.lock:
            self._run_and_wait(lambda: self.vendor.bit_io(True, read_back=True))
            data = self.vendor.read_in(1)
        if len(data) != 1:
            raise TransportFault("No bit read back", command=self.vendor.last_command)
        return bool(data[0] & 0x01)

    def write_byte(self, value: int) -> None:
        self._run_and_wait(lambda: self.vendor.byte_io(value, read_back=False))

    def read_byte(self) -> int:
        with self.lock:
            self._run_and_wait(lambda: self.vendor.byte_io(0xFF, read_back=True))
            data = self.vendor.read_in(1)
        if len(data) != 1:
            raise TransportFault("No byte read back", command=self.vendor.last_command)
        return data[0]

    def write(self, data: bytes) -> None:
        """Write in packet-sized chunks, draining the echo from EP3 each time."""
        size = self.packet_size
        with self.lock:
            for start in range(0, len(data), size):
                chunk = bytes(data[start:start + size])
                self.vendor.write_out(chunk)
                self._run_and_wait(
                    lambda n=len(chunk): self.vendor.block_io(n, strong_pullup=True)
                )
                echo = self.vendor.read_in(len(chunk))
                if len(echo) != len(chunk):
                    raise TransportFault(
                        f"Short echo drain: {len(echo)} of {len(chunk)} bytes",
                        command=self.vendor.last_command,
                    )

    def read(self, count: int) -> bytes:
        """Read by shifting 0xFF bytes through the bus in packet-sized chunks."""
        size = self.packet_size
        out = bytearray()
        with self.lock:
            for start in range(0, count, size):
                n = min(size, count - start)
                self.vendor.write_out(b"\xff" * n)
                self._run_and_wait(lambda n=n: self.vendor.block_io(n))
                chunk = self.vendor.read_in(n)
                if len(chunk) != n:
                    raise TransportFault(
                        f"Short block read: {len(chunk)} of {n} bytes",
                        command=self.vendor.last_command,
                    )
                out += chunk
        return bytes(out)

    def match_rom(self, rom_id: RomId, overdrive: bool = False) -> None:
        with self.lock:
            self.vendor.write_out(rom_id.wire_bytes())
            self._run_and_wait(lambda: self.vendor.match_access(overdrive=overdrive))

    def bytes_available(self) -> int:
        return self.state().inbound_count

    # -- hardware search ---------------------------------------------------

    def search_all(self, conditional: bool = False, hardware: bool = True) -> list[RomId]:
        """Enumerate devices with the adapter's SEARCH ACCESS command.

        Args:
            conditional: Only find devices in an alarm state.
            hardware: Use the native search; False falls back to the
                bit-banged software search.

        Raises:
            ProtocolError: If a round yields no result, inconsistent block
                counts, or an id with a bad CRC.
            TransportFault: If the adapter buffers are in an unexpected state.
        """
        if not hardware:
            return super().search_all(conditional)

        max_devices = self.max_search_devices
        found: list[RomId] = []
        seed = bytes(ROM_SIZE)
        with self.lock:
            while True:
                self._check_buffers(expected_out=0)
                self.vendor.write_out(seed)
                self._check_buffers(expected_out=ROM_SIZE)

                result, _ = self._run_and_wait(
                    lambda: self.vendor.search_access(
                        max_devices, conditional=conditional
                    ),
                    require_result=True,
                )
                if result.num_results == 0:
                    raise ProtocolError(
                        "SEARCH ACCESS returned no result",
                        command=self.vendor.last_command,
                    )
                if result.no_presence:
                    break

                data = self._drain_search_data()
                if len(data) % ROM_SIZE != 0 or len(data) < ROM_SIZE:
                    raise ProtocolError(
                        f"SEARCH ACCESS returned {len(data)} bytes, "
                        f"expected a non-empty multiple of {ROM_SIZE}",
                        flags=result,
                    )
                blocks = [data[i:i + ROM_SIZE] for i in range(0, len(data), ROM_SIZE)]
                more_devices = not result.search_underrun
                if more_devices and len(blocks) <= max_devices:
                    raise ProtocolError(
                        "SEARCH ACCESS reported more devices but returned "
                        f"only {len(blocks)} block(s)",
                        flags=result,
                    )
                rom_blocks = blocks[:-1] if more_devices else blocks
                for block in rom_blocks:
                    rom_id = RomId.from_wire(block)
                    rom_id.check_crc()
                    found.append(rom_id)
                self._check_buffers(expected_out=0, expected_in=0)
                if not more_devices:
                    break
                seed = blocks[-1]
        _LOGGER.info("hardware search found %d device(s)", len(found))
        return found

    def _check_buffers(self, expected_out: int, expected_in: int = 0) -> None:
        status = self.state()
        if status.inbound_count != expected_in or status.outbound_count != expected_out:
            raise TransportFault(
                f"Unexpected adapter buffer state: in={status.inbound_count} "
                f"(expected {expected_in}), out={status.outbound_count} "
                f"(expected {expected_out})",
                command=self.vendor.last_command,
                status=status,
            )

    def _drain_search_data(self) -> bytes:
        data = bytearray()
        deadline = time.monotonic() + self.timeout
        while True:
            pending = self.state().inbound_count
            if pending == 0 and len(data) >= ROM_SIZE:
                return bytes(data)
            if pending:
                data += self.vendor.read_in(pending)
                continue
            if time.monotonic() > deadline:
                raise TransportFault(
                    "No data received in response to SEARCH ACCESS",
                    command=self.vendor.last_command,
                )
            time.sleep(_SEARCH_DRAIN_INTERVAL)
