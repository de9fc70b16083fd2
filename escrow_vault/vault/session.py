"""
SessionManager — Per-session escrow key import and zero-round-trip signing.

Lifecycle:
- ``start_session(store)`` — export the escrow key from the custodial
  service (wrapped to a fresh transport key), open every bundle, then
  publish the working set in one step. All-or-nothing: any failure wipes
  what was derived so far and leaves the manager idle.
- ``sign_with_wallet(wallet_id, message)`` — local signing only.
- ``end_session()`` — wipe the escrow key and every wallet key, go idle.

Sessions left active at interpreter exit are burned by an ``atexit`` hook;
a manager collected while active wipes its session through a finalizer.

Security Note:
    Never log key material. Wiping covers the buffers this module owns;
    see ``wipe.py`` for the copies it cannot reach.
"""
import asyncio
import atexit
import enum
import logging
import threading
import time
import weakref
from collections.abc import AsyncIterator
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from eth_utils import ValidationError as KeyValidationError

from ..conf import DEFAULT_DECRYPT_WORKERS, DEFAULT_EXPORT_TIMEOUT, EscrowConfig
from ..exceptions import (
    CollaboratorUnavailableError,
    ConfigurationError,
    EnvelopeDecryptionError,
    ErasureError,
    SessionAlreadyActiveError,
    SessionStateError,
)
from .crypto import (
    PublicKeyLike,
    deserialize_secret,
    generate_keypair,
    open_envelope,
    private_key_from_hex,
    seal_envelope,
    serialize_secret,
    unwrap_export_bundle,
)
from .custodian import CustodialClient
from .store import WalletBundle, WalletStore
from .wallets import Message, address_from_private_key, sign_message
from .wipe import wipe, wipe_all

logger = logging.getLogger("escrow.vault")


class SessionState(str, enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass
class DecryptedWallet:
    """A wallet key opened for the current session. Never persisted."""

    id: str
    name: str
    private_key: bytearray = field(repr=False)
    address: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WalletInfo:
    id: str
    name: str
    address: str


@dataclass(frozen=True)
class SessionStats:
    wallet_count: int
    export_ms: float = 0.0
    decrypt_ms: float = 0.0
    duration_s: float = 0.0


@dataclass
class _ActiveSession:
    decryption_key: bytearray = field(repr=False)
    key_id: str
    wallets: dict[str, DecryptedWallet]
    started_at: datetime
    started_monotonic: float
    stats: SessionStats


def open_wallet_bundle(decryption_key: bytearray, bundle: WalletBundle) -> DecryptedWallet:
    """Open one bundle and check its key against the stored address.

    Raises:
        EnvelopeDecryptionError: If the envelope does not open, does not hold
            a wallet secret, or its key derives a different address.
    """
    try:
        plaintext = open_envelope(decryption_key, bundle.encrypted_data)
    except EnvelopeDecryptionError as err:
        raise EnvelopeDecryptionError(f"Bundle {bundle.id!r}: {err}") from err
    try:
        payload = deserialize_secret(plaintext)
        private_key = private_key_from_hex(payload.pop("privateKey"))
    except ValueError as err:
        raise EnvelopeDecryptionError(
            f"Bundle {bundle.id!r} holds no valid wallet secret"
        ) from err
    try:
        address = address_from_private_key(private_key)
    except (ValueError, KeyValidationError) as err:
        wipe(private_key)
        raise EnvelopeDecryptionError(
            f"Bundle {bundle.id!r} holds an invalid wallet key"
        ) from err
    if address.lower() != bundle.address.lower():
        wipe(private_key)
        raise EnvelopeDecryptionError(
            f"Bundle {bundle.id!r} key does not match address {bundle.address}"
        )
    return DecryptedWallet(
        id=bundle.id,
        name=bundle.name,
        private_key=private_key,
        address=bundle.address,
        metadata=payload,
    )


def _discard(futures: list[Future]) -> None:
    """Wipe every key produced by finished futures."""
    keys = [
        f.result().private_key
        for f in futures
        if f.done() and not f.cancelled() and f.exception() is None
    ]
    try:
        wipe_all(keys)
    except ErasureError as err:
        # the decrypt failure propagates, not this one
        logger.error("Erasure of partially decrypted wallets incomplete: %s", err)


def _session_buffers(session: _ActiveSession) -> list[bytearray]:
    buffers = [session.decryption_key]
    buffers.extend(w.private_key for w in session.wallets.values())
    return buffers


def _wipe_abandoned(session: _ActiveSession) -> None:
    """Finalizer for a manager collected while its session was active."""
    logger.warning("Session manager collected with an active session; wiping keys")
    buffers = _session_buffers(session)
    session.wallets.clear()
    try:
        wipe_all(buffers)
    except ErasureError as err:
        logger.error("Erasure of abandoned session incomplete: %s", err)


_LIVE_MANAGERS: "weakref.WeakSet[SessionManager]" = weakref.WeakSet()


def _burn_live_sessions() -> None:
    for manager in list(_LIVE_MANAGERS):
        if not manager.is_active:
            continue
        logger.warning("Process exiting with an active session; burning keys")
        try:
            manager.burn()
        except ErasureError as err:
            logger.error("Exit-time erasure incomplete: %s", err)


atexit.register(_burn_live_sessions)


class SessionManager:
    """Owns at most one escrow session.

    Args:
        custodian: Client for the custodial service holding the escrow key.
        organization_id: Organization the escrow key and stores belong to.
        export_timeout: Seconds allowed for the key export call.
        max_workers: Threads used to open bundles in parallel.
    """

    def __init__(
        self,
        custodian: CustodialClient,
        organization_id: str,
        *,
        export_timeout: float = DEFAULT_EXPORT_TIMEOUT,
        max_workers: int = DEFAULT_DECRYPT_WORKERS,
    ):
        if not organization_id:
            raise ConfigurationError("organization_id is required")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._custodian = custodian
        self._organization_id = organization_id
        self._export_timeout = export_timeout
        self._max_workers = max_workers
        self._session: Optional[_ActiveSession] = None
        # wipes the session if the manager is collected without ending it
        self._finalizer: Optional[weakref.finalize] = None
        # guards _session; held while signing so a wipe never overlaps a signature
        self._lock = threading.RLock()
        # serializes start/end transitions
        self._transition = asyncio.Lock()
        _LIVE_MANAGERS.add(self)

    @classmethod
    def from_config(cls, config: EscrowConfig, custodian: CustodialClient) -> "SessionManager":
        return cls(
            custodian,
            config.organization_id,
            export_timeout=config.export_timeout,
            max_workers=config.decrypt_workers,
        )

    def __repr__(self) -> str:
        return (
            f"<SessionManager org={self._organization_id} "
            f"state={self.state.value} wallets={self.wallet_count}>"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def custodian(self) -> CustodialClient:
        return self._custodian

    @property
    def organization_id(self) -> str:
        return self._organization_id

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self._session is not None else SessionState.IDLE

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def encryption_key_id(self) -> Optional[str]:
        """Escrow key id the active session was opened with."""
        session = self._session
        return session.key_id if session else None

    @property
    def started_at(self) -> Optional[datetime]:
        session = self._session
        return session.started_at if session else None

    @property
    def wallet_count(self) -> int:
        session = self._session
        return len(session.wallets) if session else 0

    @property
    def wallets(self) -> list[WalletInfo]:
        """Public view of the decrypted wallets (no key material)."""
        with self._lock:
            if self._session is None:
                return []
            return [
                WalletInfo(w.id, w.name, w.address)
                for w in self._session.wallets.values()
            ]

    def _require_wallet(self, wallet_id: str) -> DecryptedWallet:
        # caller holds self._lock
        if self._session is None:
            raise SessionStateError("No active session. Start a session first.")
        try:
            return self._session.wallets[wallet_id]
        except KeyError:
            raise KeyError(f"Unknown wallet id: {wallet_id}") from None

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    async def _export_decryption_key(self, key_id: str, timeout: float) -> tuple[bytearray, float]:
        """Export the escrow key wrapped to a fresh transport key and unwrap it."""
        transport_key, transport_public = generate_keypair()
        try:
            start = time.perf_counter()
            try:
                export_bundle = await asyncio.wait_for(
                    self._custodian.export_key(key_id, transport_public.hex()),
                    timeout,
                )
            except asyncio.TimeoutError as err:
                raise CollaboratorUnavailableError(
                    f"Key export timed out after {timeout}s"
                ) from err
            except (ConnectionError, OSError) as err:
                raise CollaboratorUnavailableError(f"Key export failed: {err}") from err
            export_ms = (time.perf_counter() - start) * 1000
            logger.info("Decryption key exported in %.1fms", export_ms)
            return (
                unwrap_export_bundle(export_bundle, transport_key, self._organization_id),
                export_ms,
            )
        finally:
            wipe(transport_key)

    async def _decrypt_bundles(
        self, decryption_key: bytearray, bundles: list[WalletBundle],
    ) -> dict[str, DecryptedWallet]:
        """Open every bundle on a worker pool; all or nothing."""
        if not bundles:
            return {}
        workers = min(self._max_workers, len(bundles))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="escrow-open") as pool:
            futures = [pool.submit(open_wallet_bundle, decryption_key, b) for b in bundles]
            try:
                await asyncio.gather(
                    *(asyncio.wrap_future(f) for f in futures),
                    return_exceptions=True,
                )
            except BaseException:
                # cancelled: let running workers finish, then wipe their output
                wait(futures)
                _discard(futures)
                raise
        failure = next((f.exception() for f in futures if f.exception()), None)
        if failure is not None:
            _discard(futures)
            raise failure
        return {w.id: w for w in (f.result() for f in futures)}

    async def start_session(
        self, store: WalletStore, timeout: Optional[float] = None,
    ) -> SessionStats:
        """Import the escrow key and decrypt every bundle in ``store``.

        Args:
            store: Wallet store sealed under the escrow key.
            timeout: Seconds allowed for the key export (defaults to the
                manager's ``export_timeout``).

        Returns:
            Timing and size of the new session.

        Raises:
            SessionAlreadyActiveError: If a session is already active.
            ConfigurationError: If the store belongs to another organization.
            CollaboratorUnavailableError: If the key export fails or times out.
            EnvelopeDecryptionError: If the export bundle or any wallet bundle
                fails to open. No wallet stays decrypted.
        """
        async with self._transition:
            if self._session is not None:
                raise SessionAlreadyActiveError(
                    "Session already active. End it first to start a new one."
                )
            if store.organization_id != self._organization_id:
                raise ConfigurationError(
                    f"Store belongs to organization {store.organization_id}, "
                    f"not {self._organization_id}"
                )
            timeout = self._export_timeout if timeout is None else timeout
            logger.info(
                "Starting session: key=%s, %d bundle(s)",
                store.encryption_key_id, len(store.bundles),
            )
            decryption_key, export_ms = await self._export_decryption_key(
                store.encryption_key_id, timeout,
            )
            try:
                start = time.perf_counter()
                wallets = await self._decrypt_bundles(decryption_key, store.bundles)
                decrypt_ms = (time.perf_counter() - start) * 1000
            except BaseException as err:
                wipe(decryption_key)
                logger.error("Session start aborted, key material wiped: %s", err)
                raise
            stats = SessionStats(
                wallet_count=len(wallets), export_ms=export_ms, decrypt_ms=decrypt_ms,
            )
            with self._lock:
                self._session = _ActiveSession(
                    decryption_key=decryption_key,
                    key_id=store.encryption_key_id,
                    wallets=wallets,
                    started_at=datetime.now(timezone.utc),
                    started_monotonic=time.monotonic(),
                    stats=stats,
                )
                self._finalizer = weakref.finalize(self, _wipe_abandoned, self._session)
                self._finalizer.atexit = False
            logger.info(
                "Session started: %d wallet(s) ready (export %.1fms, decrypt %.1fms)",
                len(wallets), export_ms, decrypt_ms,
            )
            return stats

    # ------------------------------------------------------------------
    # Active session
    # ------------------------------------------------------------------

    def sign_with_wallet(self, wallet_id: str, message: Message) -> str:
        """Sign ``message`` with a decrypted wallet. No network call.

        Raises:
            SessionStateError: If no session is active.
            KeyError: If the wallet id is not part of the session.
        """
        with self._lock:
            wallet = self._require_wallet(wallet_id)
            start = time.perf_counter()
            signature = sign_message(wallet.private_key, message)
        logger.debug(
            "Signed with wallet=%s in %.2fms", wallet_id,
            (time.perf_counter() - start) * 1000,
        )
        return signature

    def seal_wallet(self, wallet_id: str, public_key: PublicKeyLike) -> str:
        """Re-seal a decrypted wallet's secret to another public key."""
        with self._lock:
            wallet = self._require_wallet(wallet_id)
            payload = dict(wallet.metadata)
            payload["privateKey"] = "0x" + wallet.private_key.hex()
            return seal_envelope(public_key, serialize_secret(payload))

    # ------------------------------------------------------------------
    # Session end
    # ------------------------------------------------------------------

    def burn(self) -> Optional[SessionStats]:
        """Synchronously wipe and drop the active session, if any.

        The manager is idle when this returns, even if some buffer failed
        to wipe; every buffer is attempted before ``ErasureError`` is raised.
        """
        with self._lock:
            session, self._session = self._session, None
            finalizer, self._finalizer = self._finalizer, None
        if finalizer is not None:
            finalizer.detach()
        if session is None:
            return None
        duration = time.monotonic() - session.started_monotonic
        buffers = _session_buffers(session)
        count = len(session.wallets)
        session.wallets.clear()
        try:
            wipe_all(buffers)
        finally:
            logger.info(
                "Session ended after %.1fs: decryption key burned, %d wallet key(s) wiped",
                duration, count,
            )
        return replace(session.stats, duration_s=duration)

    async def end_session(self) -> Optional[SessionStats]:
        """End the active session. A no-op (returns None) when idle."""
        async with self._transition:
            if self._session is None:
                logger.info("No active session to end")
                return None
            return self.burn()

    @asynccontextmanager
    async def session(
        self, store: WalletStore, timeout: Optional[float] = None,
    ) -> AsyncIterator["SessionManager"]:
        """Run a block inside a session that is always ended afterwards."""
        await self.start_session(store, timeout=timeout)
        try:
            yield self
        finally:
            await self.end_session()
