"""
Vault Secure Erasure — In-place overwrite of sensitive buffers.

Security Note:
    This is best-effort. Python strings, ``bytes`` objects and integers are
    immutable and may be copied by the interpreter or by libraries
    (hex parsing, JSON decoding, OpenSSL key objects). Those copies cannot
    be wiped from here and remain readable until the allocator reuses the
    memory. Only buffers we own (``bytearray`` / writable ``memoryview``)
    are overwritten; immutable inputs are rejected rather than silently
    "wiped".
"""
import ctypes
import logging
from collections.abc import Iterable
from typing import Union

from ..exceptions import ErasureError

logger = logging.getLogger("escrow.vault")

Wipeable = Union[bytearray, memoryview]


def wipe(buffer: Wipeable) -> None:
    """Overwrite every byte of ``buffer`` with zero, in place.

    Uses ``ctypes.memset`` on the buffer's own memory so the write cannot
    be skipped, then verifies the result.

    Args:
        buffer: A ``bytearray`` or writable, C-contiguous ``memoryview``.

    Raises:
        TypeError: If the buffer is immutable (``bytes``, ``str``, ...).
        ValueError: If the buffer still holds non-zero bytes afterwards.
    """
    if isinstance(buffer, memoryview):
        if buffer.readonly:
            raise TypeError("Cannot wipe a read-only memoryview")
        view = buffer.cast("B")
    elif isinstance(buffer, bytearray):
        view = memoryview(buffer)
    else:
        raise TypeError(
            f"Cannot wipe immutable {type(buffer).__name__}; use a bytearray"
        )
    size = view.nbytes
    if size == 0:
        return
    ctypes.memset(ctypes.addressof(ctypes.c_char.from_buffer(view)), 0, size)
    if any(view):
        raise ValueError("Buffer still holds data after wipe")


def wipe_all(buffers: Iterable[Wipeable]) -> int:
    """Wipe every buffer independently.

    A failure on one buffer never stops the others from being wiped.

    Args:
        buffers: Buffers to erase.

    Returns:
        Number of buffers wiped.

    Raises:
        ErasureError: After all buffers were attempted, if any failed.
    """
    failures: list[BaseException] = []
    wiped = 0
    for buf in buffers:
        try:
            wipe(buf)
            wiped += 1
        except Exception as err:
            logger.error("Failed to wipe buffer: %s", err)
            failures.append(err)
    if failures:
        raise ErasureError(failures)
    return wiped


class SecretBuffer:
    """Owned secret bytes that are zeroed when closed.

    Copies the input into a private ``bytearray``; if the input itself was
    a ``bytearray`` it is wiped after the copy. Usable as a context manager.
    """

    __slots__ = ("_data", "_closed", "__weakref__")

    def __init__(self, data: Union[bytes, bytearray, memoryview]):
        self._data = bytearray(data)
        self._closed = False
        if isinstance(data, bytearray):
            wipe(data)

    @property
    def closed(self) -> bool:
        return self._closed

    def view(self) -> memoryview:
        """Return a read-only view over the secret. Do not keep it."""
        if self._closed:
            raise ValueError("SecretBuffer already wiped")
        return memoryview(self._data).toreadonly()

    def raw(self) -> bytearray:
        """Return the underlying buffer (wiped together with this object)."""
        if self._closed:
            raise ValueError("SecretBuffer already wiped")
        return self._data

    def close(self) -> None:
        """Zero the secret. Safe to call more than once."""
        if self._closed:
            return
        try:
            wipe(self._data)
        finally:
            self._closed = True

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __del__(self):
        try:
            self.close()
        except Exception:  # pylint: disable=broad-except
            # interpreter teardown; nothing left to report to
            pass

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"<SecretBuffer len={len(self._data)} wiped={self._closed}>"
