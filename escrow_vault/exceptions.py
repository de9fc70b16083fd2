"""Escrow Vault exceptions.

All errors raised by the vault derive from :class:`EscrowError` so callers
can catch the whole family in one place.
"""


class EscrowError(Exception):
    """Base class for every escrow vault error."""


class ConfigurationError(EscrowError):
    """Missing or invalid credentials/identifiers. Fatal, never retried."""


class StoreFormatError(EscrowError):
    """A persisted wallet store could not be read or validated."""


class EnvelopeDecryptionError(EscrowError):
    """An envelope was malformed or failed authentication.

    Raised for tampered data, a private key that does not match the
    envelope's receiver, or corruption. Never accompanied by plaintext.
    """


class CollaboratorUnavailableError(EscrowError):
    """The custodial service could not be reached or timed out.

    Retryable by the caller with backoff; the session manager itself
    does not retry.
    """


class SessionStateError(EscrowError):
    """An operation was invoked in the wrong session state."""


class SessionAlreadyActiveError(SessionStateError):
    """A session was started while another one is still active."""


class ErasureError(EscrowError):
    """One or more buffers could not be wiped.

    Every buffer is attempted before this is raised; ``failures`` holds
    the individual exceptions in the order they happened.
    """

    def __init__(self, failures: list[BaseException]):
        self.failures = list(failures)
        super().__init__(
            f"Failed to wipe {len(self.failures)} buffer(s): "
            + "; ".join(repr(f) for f in self.failures)
        )
