"""Session root: USB adapter discovery and adapter/device registries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import usb.core
import usb.util

from .devices import DS1922, create_device
from .errors import DeviceNotSupported, TransportFault, ValidationError
from .rom import RomId
from .usb import DS2490, PRODUCT_ID, VENDOR_ID
from .usb.poller import DEFAULT_TIMEOUT

_LOGGER = logging.getLogger(__name__)

INTERFACE = 0


@dataclass(frozen=True)
class AdapterInfo:
    """A DS2490 found on the USB bus."""

    bus: int
    address: int

    @property
    def key(self) -> tuple[int, int]:
        return (self.bus, self.address)

    def __str__(self) -> str:
        return f"DS2490 at bus {self.bus:03d} address {self.address:03d}"


class Session:
    """Owns every adapter and device opened through it.

    Adapters are keyed by USB (bus, address), devices by that adapter key
    plus their ROM id; asking twice for the same one returns the same
    object. ``close()`` stops the status pollers and releases the USB
    interfaces.

    Args:
        backend: pyusb backend to search with; None picks the default.
        timeout: Completion timeout handed to every adapter.
        device_options: Keyword arguments for every device driver, e.g.
            ``use_skip_rom`` or ``conflict_delay``.
    """

    def __init__(
        self,
        backend: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
        **device_options: object,
    ) -> None:
        self.backend = backend
        self.timeout = timeout
        self.device_options = device_options
        self.adapters: dict[tuple[int, int], DS2490] = {}
        self.devices: dict[tuple[tuple[int, int], RomId], DS1922] = {}
        self._handles: dict[tuple[int, int], Any] = {}

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _find(self) -> list[Any]:
        try:
            return list(
                usb.core.find(
                    find_all=True,
                    idVendor=VENDOR_ID,
                    idProduct=PRODUCT_ID,
                    backend=self.backend,
                )
            )
        except usb.core.NoBackendError as e:
            raise TransportFault(f"No USB backend available: {e}") from e

    def list_adapters(self) -> list[AdapterInfo]:
        """Enumerate attached DS2490 adapters."""
        found = [AdapterInfo(h.bus, h.address) for h in self._find()]
        _LOGGER.info("found %d DS2490 adapter(s)", len(found))
        return found

    def open_adapter(
        self, info: AdapterInfo | None = None, alt_setting: int = 0
    ) -> DS2490:
        """Open ``info``, or the first adapter found when None.

        Raises:
            TransportFault: If no matching adapter is attached.
        """
        if info is not None and info.key in self.adapters:
            return self.adapters[info.key]
        for handle in self._find():
            if info is None or (handle.bus, handle.address) == info.key:
                return self.open_handle(handle, alt_setting)
        raise TransportFault(f"Adapter not found: {info or 'any DS2490'}")

    def open_handle(self, handle: Any, alt_setting: int = 0) -> DS2490:
        """Configure an already found pyusb device and start its adapter."""
        if (handle.idVendor, handle.idProduct) != (VENDOR_ID, PRODUCT_ID):
            raise DeviceNotSupported(
                f"USB device {handle.idVendor:04X}:{handle.idProduct:04X} is not a DS2490"
            )
        key = (handle.bus, handle.address)
        if key in self.adapters:
            return self.adapters[key]
        try:
            handle.set_configuration()
            usb.util.claim_interface(handle, INTERFACE)
            handle.set_interface_altsetting(interface=INTERFACE, alternate_setting=alt_setting)
        except usb.core.USBError as e:
            raise TransportFault(f"Cannot claim DS2490 interface: {e}") from e
        adapter = DS2490(handle, alt_setting, self.timeout)
        adapter.open()
        self._handles[key] = handle
        self.adapters[key] = adapter
        try:
            adapter.reset_device()
        except TransportFault:
            self._release(key)
            raise
        _LOGGER.info("opened %s", AdapterInfo(*key))
        return adapter

    def select_device(
        self, adapter: DS2490, rom_id: RomId, passphrase: str = ""
    ) -> DS1922:
        """Return the driver for ``rom_id`` on ``adapter``, creating it on first use.

        Raises:
            ValidationError: If ``adapter`` was not opened by this session.
        """
        key = (self._adapter_key(adapter), rom_id)
        device = self.devices.get(key)
        if device is None:
            device = create_device(adapter, rom_id, passphrase, **self.device_options)
            self.devices[key] = device
        elif passphrase:
            device.set_password(passphrase)
        return device

    def _adapter_key(self, adapter: DS2490) -> tuple[int, int]:
        for key, opened in self.adapters.items():
            if opened is adapter:
                return key
        raise ValidationError("Adapter was not opened by this session")

    def _release(self, key: tuple[int, int]) -> None:
        adapter = self.adapters.pop(key)
        handle = self._handles.pop(key)
        adapter.close()
        for device_key in [k for k in self.devices if k[0] == key]:
            del self.devices[device_key]
        try:
            usb.util.release_interface(handle, INTERFACE)
        except usb.core.USBError as e:
            _LOGGER.warning("releasing %s failed: %s", AdapterInfo(*key), e)
        usb.util.dispose_resources(handle)

    def close(self) -> None:
        for key in list(self.adapters):
            self._release(key)
