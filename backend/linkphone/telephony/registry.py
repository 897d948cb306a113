"""
The Link Phone - Phone Registry

In-memory registry of phone widgets with idle eviction and a bounded
recent-calls history. One widget per embedding page; each widget owns at
most one call.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

from linkphone.config import Settings
from linkphone.core.exceptions import ConfigurationError, PhoneLimitError, PhoneNotFoundError

from .api_client import LinkApiClient
from .call_logger import CallCompleteHook
from .models import CallRecord
from .phone import PhoneWidget
from .providers.base import AdapterFactory, PermissionsFactory

logger = logging.getLogger(__name__)


class PhoneRegistry:
    """
    Registry of live phone widgets.

    Bounded by ``max_phones``. Widgets idle for longer than the TTL with no
    call in progress are shut down by a background task.

    Usage:
        registry = PhoneRegistry(settings, api_client, adapter_factory, permissions_factory)
        await registry.start()

        phone = await registry.create_phone(client_id="client-1")
        await phone.place_call("07912345678")

        await registry.stop()
    """

    def __init__(
        self,
        settings: Settings,
        api_client: LinkApiClient,
        adapter_factory: AdapterFactory,
        permissions_factory: PermissionsFactory,
        on_call_complete: Optional[CallCompleteHook] = None,
    ):
        self._settings = settings
        self._api = api_client
        self._adapter_factory = adapter_factory
        self._permissions_factory = permissions_factory
        self._on_call_complete = on_call_complete

        self._phones: Dict[str, PhoneWidget] = {}
        self._recent_calls: Deque[CallRecord] = deque(maxlen=settings.recent_calls_max)
        self._lock = asyncio.Lock()
        self._max_phones = settings.max_phones
        self._idle_ttl = timedelta(minutes=settings.phone_idle_ttl_minutes)
        self._cleanup_interval = settings.cleanup_interval_seconds
        self._cleanup_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def count(self) -> int:
        return len(self._phones)

    async def start(self) -> None:
        """Start background cleanup task."""
        if self._started:
            return

        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        self._started = True

        logger.info(
            "PhoneRegistry started: max=%d, idle_ttl=%s, cleanup_interval=%ds",
            self._max_phones,
            self._idle_ttl,
            self._cleanup_interval,
        )

    async def stop(self) -> None:
        """Stop background tasks and shut down every phone."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        async with self._lock:
            phones = list(self._phones.values())
            self._phones.clear()

        for phone in phones:
            await self._shutdown_phone(phone)

        self._started = False
        logger.info("PhoneRegistry stopped: shut down %d phones", len(phones))

    async def create_phone(
        self,
        client_id: Optional[str] = None,
        person_id: Optional[str] = None,
        default_phone_number: Optional[str] = None,
        initialize: bool = True,
    ) -> PhoneWidget:
        """
        Create (and by default initialize) a phone widget.

        Raises:
            PhoneLimitError: If at capacity
            PhoneInitializationError: If initialization fails; the widget
                stays registered in the error state so it can be retried
        """
        async with self._lock:
            if len(self._phones) >= self._max_phones:
                raise PhoneLimitError(f"Maximum phones ({self._max_phones}) reached")

            phone_id = f"ph_{uuid.uuid4().hex[:12]}"
            phone = PhoneWidget(
                phone_id=phone_id,
                api_client=self._api,
                adapter_factory=self._adapter_factory,
                permissions=self._permissions_factory(),
                settings=self._settings,
                client_id=client_id,
                person_id=person_id,
                default_phone_number=default_phone_number,
                on_call_complete=self._on_call_complete,
                on_call_finished=self.record_call,
            )
            self._phones[phone_id] = phone

        logger.info("Phone created: %s (client=%s)", phone_id, "yes" if client_id else "no")

        if initialize:
            await phone.initialize()
        return phone

    async def get_phone(self, phone_id: str) -> Optional[PhoneWidget]:
        async with self._lock:
            return self._phones.get(phone_id)

    async def get_phone_or_raise(self, phone_id: str) -> PhoneWidget:
        """Get a phone by ID or raise if not found."""
        phone = await self.get_phone(phone_id)
        if phone is None:
            raise PhoneNotFoundError(f"Phone not found: {phone_id}")
        return phone

    async def list_phones(self) -> List[PhoneWidget]:
        async with self._lock:
            return list(self._phones.values())

    async def remove_phone(self, phone_id: str) -> None:
        """Shut down and forget a phone (hangs up any call in progress)."""
        async with self._lock:
            phone = self._phones.pop(phone_id, None)
        if phone is None:
            raise PhoneNotFoundError(f"Phone not found: {phone_id}")
        await self._shutdown_phone(phone)
        logger.info("Phone removed: %s", phone_id)

    def record_call(self, record: CallRecord) -> None:
        """Append a finished call to the recent-calls history."""
        self._recent_calls.append(record)

    def get_recent_calls(self, limit: int = 50, phone_id: Optional[str] = None) -> List[CallRecord]:
        """Most recent finished calls first."""
        records = [
            r for r in reversed(self._recent_calls)
            if phone_id is None or r.phone_id == phone_id
        ]
        return records[:limit]

    async def _shutdown_phone(self, phone: PhoneWidget) -> None:
        try:
            await phone.shutdown()
        except Exception:
            logger.exception("Error shutting down phone %s", phone.phone_id)

    async def _cleanup_loop(self) -> None:
        """Background task to evict idle phones."""
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self.evict_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in cleanup loop: %s", str(e))

    async def evict_idle(self, now: Optional[datetime] = None) -> int:
        """Shut down phones idle past the TTL with no call. Returns how many."""
        now = now or datetime.utcnow()
        async with self._lock:
            stale_ids = [
                phone_id for phone_id, phone in self._phones.items()
                if phone.session is None and now - phone.last_active_at > self._idle_ttl
            ]
            stale = [self._phones.pop(phone_id) for phone_id in stale_ids]

        for phone in stale:
            await self._shutdown_phone(phone)

        if stale:
            logger.info("Evicted %d idle phones", len(stale))
        return len(stale)


# Global instance (initialized in main.py)
_registry: Optional[PhoneRegistry] = None


def get_registry() -> PhoneRegistry:
    """Get the global phone registry."""
    if _registry is None:
        raise ConfigurationError("Phone registry has not been initialized")
    return _registry


async def init_registry(
    settings: Settings,
    api_client: LinkApiClient,
    adapter_factory: AdapterFactory,
    permissions_factory: PermissionsFactory,
) -> PhoneRegistry:
    """Initialize and start the global phone registry."""
    global _registry
    _registry = PhoneRegistry(settings, api_client, adapter_factory, permissions_factory)
    await _registry.start()
    return _registry
