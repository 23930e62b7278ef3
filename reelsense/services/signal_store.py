"""Durable per-user record of consumption and save-for-later signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..models import CatalogItem, ConsumptionRecord, ContentType, Priority, SavedItem
from ..utils import utcnow
from .repository import SignalKind, SignalRepository

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 500
PERSISTENCE_ERRORS = (SQLAlchemyError, OSError)

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class SignalRead(Generic[RecordT]):
    """Records read from the store and whether the backend answered."""

    items: list[RecordT] = field(default_factory=list)
    available: bool = True


class SignalStore:
    """Signal storage scoped to a single user.

    Reads never raise: an unavailable backend yields an empty read flagged
    ``available=False``. Writes return ``True`` on success and ``False``
    when the record is invalid or the backend failed, leaving previously
    stored data untouched.
    """

    def __init__(
        self,
        repository: SignalRepository,
        user_id: str,
        *,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], datetime] = utcnow,
        on_change: Callable[[str], None] | None = None,
    ):
        if not user_id:
            raise ValueError("A user id is required to open a signal store")
        self._repository = repository
        self._user_id = user_id
        self._capacity = capacity
        self._clock = clock
        self._on_change = on_change

    @property
    def user_id(self) -> str:
        return self._user_id

    async def record_consumption(
        self,
        item: CatalogItem,
        user_rating: float | None = None,
        completion_pct: float | None = None,
    ) -> bool:
        """Upsert a consumption record; the latest call wins."""

        record = self._build(
            ConsumptionRecord,
            content_id=item.id,
            content_type=item.type,
            title=item.title,
            genre_ids=list(item.genre_ids),
            catalog_rating=item.rating,
            consumed_at=self._clock(),
            user_rating=user_rating,
            completion_pct=completion_pct,
        )
        if record is None:
            return False
        return await self._write(
            "consumption",
            record,
            replace=True,
            capacity=self._capacity,
        )

    async def record_saved(
        self, item: CatalogItem, priority: Priority | None = "medium"
    ) -> bool:
        """Queue a title for later. Repeated adds keep the first entry."""

        saved = self._build(
            SavedItem,
            content_id=item.id,
            content_type=item.type,
            title=item.title,
            genre_ids=list(item.genre_ids),
            added_at=self._clock(),
            priority=priority,
        )
        if saved is None:
            return False
        return await self._write("saved", saved, replace=False)

    async def remove_saved(self, content_id: int, content_type: ContentType) -> bool:
        try:
            removed = await self._repository.delete(
                self._user_id, "saved", (content_id, content_type)
            )
        except PERSISTENCE_ERRORS:
            logger.exception(
                "Failed to remove saved item %s/%s for %s",
                content_type,
                content_id,
                self._user_id,
            )
            return False
        if removed:
            self._notify()
        return True

    async def is_saved(self, content_id: int, content_type: ContentType) -> bool:
        """Return whether a title is on the watchlist, ``False`` when unavailable."""

        try:
            payload = await self._repository.get(
                self._user_id, "saved", (content_id, content_type)
            )
        except PERSISTENCE_ERRORS as exc:
            logger.warning("Signal store unavailable for %s: %s", self._user_id, exc)
            return False
        return payload is not None

    async def clear_all(self) -> bool:
        try:
            await self._repository.clear(self._user_id)
        except PERSISTENCE_ERRORS:
            logger.exception("Failed to clear signals for %s", self._user_id)
            return False
        self._notify()
        return True

    async def load_consumption(self) -> SignalRead[ConsumptionRecord]:
        return await self._read("consumption", ConsumptionRecord)

    async def load_saved(self) -> SignalRead[SavedItem]:
        return await self._read("saved", SavedItem)

    async def list_consumption(self) -> list[ConsumptionRecord]:
        return (await self.load_consumption()).items

    async def list_saved(self) -> list[SavedItem]:
        return (await self.load_saved()).items

    async def _write(
        self,
        kind: SignalKind,
        record: ConsumptionRecord | SavedItem,
        *,
        replace: bool,
        capacity: int | None = None,
    ) -> bool:
        try:
            written = await self._repository.put(
                self._user_id,
                kind,
                record.identity,
                record.model_dump(mode="json"),
                replace=replace,
                capacity=capacity,
            )
        except PERSISTENCE_ERRORS:
            logger.exception(
                "Failed to store %s signal %s/%s for %s",
                kind,
                record.content_type,
                record.content_id,
                self._user_id,
            )
            return False
        if written:
            self._notify()
        return True

    async def _read(
        self, kind: SignalKind, model: type[RecordT]
    ) -> SignalRead[RecordT]:
        try:
            payloads = await self._repository.list_records(self._user_id, kind)
        except PERSISTENCE_ERRORS as exc:
            logger.warning(
                "Signal store unavailable, treating %s for %s as empty: %s",
                kind,
                self._user_id,
                exc,
            )
            return SignalRead(items=[], available=False)

        items: list[RecordT] = []
        for payload in payloads:
            record = self._parse(model, payload)
            if record is not None:
                items.append(record)
        return SignalRead(items=items, available=True)

    def _build(self, model: type[RecordT], **fields: Any) -> RecordT | None:
        try:
            return model(**fields)
        except ValidationError as exc:
            logger.warning(
                "Rejected invalid %s for %s: %s", model.__name__, self._user_id, exc
            )
            return None

    def _parse(self, model: type[RecordT], payload: Any) -> RecordT | None:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "Skipping unreadable %s for %s: %s", model.__name__, self._user_id, exc
            )
            return None

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self._user_id)
