"""Per-user record storage backed by SQLAlchemy."""

from __future__ import annotations

import logging
from typing import Any, Literal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SignalRecord

logger = logging.getLogger(__name__)

SignalKind = Literal["consumption", "saved"]
RecordKey = tuple[int, str]


class SignalRepository:
    """Generic get/put/delete store keyed by user id and record identity.

    Every method runs in its own transaction and lets database errors
    propagate; callers decide how to degrade.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(
        self, user_id: str, kind: SignalKind, key: RecordKey
    ) -> dict[str, Any] | None:
        content_id, content_type = key
        async with self._session_factory() as session:
            stmt = select(SignalRecord.payload).where(
                SignalRecord.user_id == user_id,
                SignalRecord.kind == kind,
                SignalRecord.content_id == content_id,
                SignalRecord.content_type == content_type,
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_records(self, user_id: str, kind: SignalKind) -> list[dict[str, Any]]:
        """Return payloads in insertion order."""

        async with self._session_factory() as session:
            stmt = (
                select(SignalRecord.payload)
                .where(SignalRecord.user_id == user_id, SignalRecord.kind == kind)
                .order_by(SignalRecord.id)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def put(
        self,
        user_id: str,
        kind: SignalKind,
        key: RecordKey,
        payload: dict[str, Any],
        *,
        replace: bool = True,
        capacity: int | None = None,
    ) -> bool:
        """Insert or update a record and trim the collection to ``capacity``.

        Returns ``False`` when the record already exists and ``replace`` is
        disabled. The write and the trim share one transaction. When a
        concurrent writer inserts the same record first, the insert turns
        into an update (or a no-op without ``replace``).
        """

        try:
            return await self._put_once(user_id, kind, key, payload, replace, capacity)
        except IntegrityError:
            if not replace:
                return False
            logger.debug(
                "Concurrent insert of %s record %s for user %s, updating instead",
                kind,
                key,
                user_id,
            )
            return await self._put_once(user_id, kind, key, payload, replace, capacity)

    async def _put_once(
        self,
        user_id: str,
        kind: SignalKind,
        key: RecordKey,
        payload: dict[str, Any],
        replace: bool,
        capacity: int | None,
    ) -> bool:
        content_id, content_type = key
        async with self._session_factory() as session:
            async with session.begin():
                stmt = select(SignalRecord).where(
                    SignalRecord.user_id == user_id,
                    SignalRecord.kind == kind,
                    SignalRecord.content_id == content_id,
                    SignalRecord.content_type == content_type,
                )
                existing = (await session.execute(stmt)).scalar_one_or_none()
                if existing is not None:
                    if not replace:
                        return False
                    existing.payload = payload
                    return True

                session.add(
                    SignalRecord(
                        user_id=user_id,
                        kind=kind,
                        content_id=content_id,
                        content_type=content_type,
                        payload=payload,
                    )
                )
                await session.flush()
                if capacity is not None:
                    await self._evict(session, user_id, kind, capacity)
        return True

    async def delete(self, user_id: str, kind: SignalKind, key: RecordKey) -> int:
        content_id, content_type = key
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(SignalRecord).where(
                        SignalRecord.user_id == user_id,
                        SignalRecord.kind == kind,
                        SignalRecord.content_id == content_id,
                        SignalRecord.content_type == content_type,
                    )
                )
                removed = result.rowcount or 0
        return removed

    async def clear(self, user_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(SignalRecord).where(SignalRecord.user_id == user_id)
                )

    @staticmethod
    async def _evict(
        session: AsyncSession, user_id: str, kind: SignalKind, capacity: int
    ) -> None:
        stmt = (
            select(SignalRecord.id)
            .where(SignalRecord.user_id == user_id, SignalRecord.kind == kind)
            .order_by(SignalRecord.id.desc())
            .offset(capacity)
        )
        stale_ids = list((await session.execute(stmt)).scalars().all())
        if not stale_ids:
            return
        await session.execute(delete(SignalRecord).where(SignalRecord.id.in_(stale_ids)))
        logger.debug(
            "Evicted %s %s records for user %s past capacity %s",
            len(stale_ids),
            kind,
            user_id,
            capacity,
        )
