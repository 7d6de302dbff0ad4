"""Eight-byte device password."""

from __future__ import annotations

import hashlib

from ..errors import ValidationError

PASSWORD_SIZE = 8


class PasswordBuffer:
    """The 8 bytes sent with every password-gated command.

    An empty passphrase means "no password" and yields all zeros;
    otherwise the first 8 bytes of the passphrase's SHA-256 digest are
    used. The device compares these bytes verbatim, so the same
    passphrase must be used to set and to present a password.
    """

    __slots__ = ("_data",)

    def __init__(self, data: bytes = bytes(PASSWORD_SIZE)) -> None:
        if len(data) != PASSWORD_SIZE:
            raise ValidationError(
                f"Password needs {PASSWORD_SIZE} bytes, got {len(data)}"
            )
        self._data = bytes(data)

    @classmethod
    def from_passphrase(cls, passphrase: str) -> PasswordBuffer:
        if not passphrase:
            return cls()
        digest = hashlib.sha256(passphrase.encode("utf-8")).digest()
        return cls(digest[:PASSWORD_SIZE])

    @property
    def is_empty(self) -> bool:
        return not any(self._data)

    def __bytes__(self) -> bytes:
        return self._data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PasswordBuffer):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(self._data)

    def __repr__(self) -> str:
        # Never print the secret
        return "PasswordBuffer(<empty>)" if self.is_empty else "PasswordBuffer(<set>)"
