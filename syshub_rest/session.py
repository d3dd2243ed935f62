"""
Session engine.

Single source of truth for whether the caller is authenticated and which
bearer token to present. Owns the credential record, persists it through the
CredentialStore and arms the proactive refresh timer.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Optional

from .settings import Settings
from .signals import StateSignal
from .storage import CredentialStore
from .types import CredentialRecord, StorageLocation


logger = logging.getLogger("syshub_rest.session")

# Refresh this many seconds before the access token expires
REFRESH_SAFETY_MARGIN = 2.5
# Upper bound of the refresh timer so long-lived tokens are re-validated hourly
REFRESH_MAX_DELAY = 3600.0


def compute_refresh_delay(expiry_time: datetime, now: Optional[datetime] = None) -> float:
    """Seconds until the refresh should be signalled, clamped to [0, REFRESH_MAX_DELAY]."""
    now = now or datetime.now(timezone.utc)
    remaining = (expiry_time - now).total_seconds() - REFRESH_SAFETY_MARGIN
    return max(0.0, min(remaining, REFRESH_MAX_DELAY))


class SessionEngine:
    """
    In-memory credential state machine.

    Observers subscribe to ``logged_in``, ``refresh_due`` and ``bearer``.
    In static-credential mode the engine is always logged in and all
    credential mutations are no-ops.
    """

    def __init__(self, settings: Settings, store: Optional[CredentialStore] = None) -> None:
        self._settings = settings
        self._store = store
        self._record: Optional[CredentialRecord] = None
        self._location = StorageLocation.DURABLE
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timer_pending = False

        self.logged_in: StateSignal[bool] = StateSignal(False)
        self.refresh_due: StateSignal[bool] = StateSignal(False)
        self.bearer: StateSignal[str] = StateSignal("")

        if settings.uses_static:
            self.logged_in.publish(True)
            return

        if self._store is None:
            self._store = CredentialStore(settings.oauth.store_key)
        loaded = self._store.load()
        if loaded is not None:
            record, location = loaded
            logger.debug("Restored session from %s store", location.value)
            self.set_credential(record, persist_durably=location is StorageLocation.DURABLE)

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def is_logged_in(self) -> bool:
        return self.logged_in.value

    @property
    def access_token(self) -> str:
        return self.bearer.value

    @property
    def refresh_token(self) -> str:
        return self._record.refresh_token if self._record else ""

    @property
    def username(self) -> str:
        return self._record.username if self._record else ""

    @property
    def record(self) -> Optional[CredentialRecord]:
        return self._record

    @property
    def storage_location(self) -> StorageLocation:
        return self._location

    @property
    def timer(self) -> Optional[asyncio.TimerHandle]:
        return self._timer

    # =========================================================================
    # Mutations
    # =========================================================================

    def set_credential(self, record: CredentialRecord, persist_durably: Optional[bool] = None) -> None:
        """
        Accept a new credential record.

        Args:
            record: The record to hold; ``expiry_time`` is recomputed.
            persist_durably: True for the durable store, False for the
                ephemeral store, None to keep the store used last.
        """
        if self._settings.uses_static:
            return

        record = dataclasses.replace(record, expiry_time=record.computed_expiry())
        if persist_durably is not None:
            self._location = StorageLocation.DURABLE if persist_durably else StorageLocation.EPHEMERAL

        self._record = record
        if self._store is not None:
            self._store.save(record, self._location)

        self.refresh_due.publish(False)
        self.bearer.publish(record.access_token)
        if record.access_token and record.refresh_token:
            self.logged_in.publish(True)
            self._arm_timer()
        else:
            self._cancel_timer()
            self.logged_in.publish(False)

    def clear_credential(self) -> None:
        """Drop the session (logout)."""
        if self._settings.uses_static:
            return

        self._cancel_timer()
        self._timer_pending = False
        self._record = None
        if self._store is not None:
            self._store.erase()

        self.logged_in.publish(False)
        self.bearer.publish("")
        self.refresh_due.publish(False)
        logger.debug("Session cleared")

    def resume(self) -> None:
        """Arm a timer that could not be armed without a running event loop."""
        if self._timer_pending:
            self._arm_timer()

    def reschedule(self, min_delay: float = 0.0) -> None:
        """
        Re-arm the refresh timer for a credential that is still held.

        Used after a refresh attempt that neither replaced nor cleared the
        credential, so the next attempt is signalled again by the timer.
        """
        if self._settings.uses_static or not self.logged_in.value:
            return
        self.refresh_due.publish(False)
        self._arm_timer(min_delay)

    def close(self) -> None:
        self._cancel_timer()
        self._timer_pending = False

    # =========================================================================
    # Refresh timer
    # =========================================================================

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm_timer(self, min_delay: float = 0.0) -> None:
        self._cancel_timer()
        if self._record is None or self._record.expiry_time is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._timer_pending = True
            return

        self._timer_pending = False
        delay = max(min_delay, compute_refresh_delay(self._record.expiry_time))
        self._timer = loop.call_later(delay, self._on_timer)
        logger.debug("Refresh scheduled in %.1fs", delay)

    def _on_timer(self) -> None:
        self._timer = None
        if self.logged_in.value:
            self.refresh_due.publish(True)
