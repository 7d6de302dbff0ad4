"""DS1922 register memory: windows, passwords, conflict retry, commands."""

from .password import PasswordBuffer
from .protocol import DS1922Protocol, ScratchpadReadback
from .register import PAGE_SIZE, MutableRegisterData, RegisterData
from .retry import Fatal, Retry, Success, run_with_retry

__all__ = [
    "DS1922Protocol",
    "Fatal",
    "MutableRegisterData",
    "PAGE_SIZE",
    "PasswordBuffer",
    "RegisterData",
    "Retry",
    "ScratchpadReadback",
    "Success",
    "run_with_retry",
]
