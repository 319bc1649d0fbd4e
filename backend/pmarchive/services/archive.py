"""Per-user archive ledger with a mirrored flag on the archived entity.

Every mutation writes the ledger row and the entity flag inside one
transaction. The flag is derived from the ledger: an entity is archived while
at least one user holds an archive record for it.
"""

import logging
import sqlite3
import struct
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional

import aiosqlite

from ..database import transaction
from ..errors import AlreadyArchived, ArchiveError, ArchiveNotFound, EntityNotFound
from ..metrics import metrics
from ..models.archive import ArchiveOut, EntityType
from .entity_flags import FLAG_REPOSITORIES, EntityFlagRepository

logger = logging.getLogger("pmarchive.archive")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RECORD_COLUMNS = "id, entity_id, entity_type, archived_by, archived_date"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def version_stamp(when: datetime) -> bytes:
    """Opaque 8-byte ordering stamp: microseconds since the epoch, big-endian."""
    return struct.pack(">q", (when - _EPOCH) // timedelta(microseconds=1))


class ArchiveService:
    """Archive, unarchive and list archives for one database connection."""

    def __init__(self, db: aiosqlite.Connection,
                 repositories: Optional[Mapping[EntityType, EntityFlagRepository]] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.repositories = FLAG_REPOSITORIES if repositories is None else repositories
        self._clock = clock

    def _repository(self, entity_type: EntityType) -> EntityFlagRepository:
        repo = self.repositories.get(entity_type)
        if repo is None:
            raise EntityNotFound(f"Unsupported entity type: {entity_type.value}")
        return repo

    async def _find_record(self, entity_id: str, entity_type: EntityType, user_id: str):
        return await (await self.db.execute(
            f"SELECT {_RECORD_COLUMNS} FROM archives "
            "WHERE entity_id = ? AND entity_type = ? AND archived_by = ?",
            (entity_id, entity_type.value, user_id),
        )).fetchone()

    async def _sync_flag(self, repo: EntityFlagRepository, entity_id: str,
                         entity_type: EntityType, when: str) -> bool:
        row = await (await self.db.execute(
            "SELECT COUNT(*) AS cnt FROM archives WHERE entity_id = ? AND entity_type = ?",
            (entity_id, entity_type.value),
        )).fetchone()
        archived = row["cnt"] > 0
        await repo.set_archived(self.db, entity_id, archived, when)
        return archived

    async def archive(self, entity_id: str, entity_type: EntityType, user_id: str) -> ArchiveOut:
        """Archive an entity for ``user_id`` and return the new ledger record.

        Raises AlreadyArchived if the user already archived it, EntityNotFound
        if the entity does not exist. Nothing is written on failure.
        """
        _require_user(user_id)
        try:
            record = await self._archive(entity_id, entity_type, user_id)
        except ArchiveError as exc:
            metrics.record_archive_op("archive", exc.code)
            raise
        metrics.record_archive_op("archive", "ok")
        logger.info("%s %s archived by %s", entity_type.value, record.entity_id, user_id)
        return record

    async def _archive(self, entity_id: str, entity_type: EntityType, user_id: str) -> ArchiveOut:
        repo = self._repository(entity_type)
        entity_id = repo.canonical_id(entity_id)
        if entity_id is None:
            raise EntityNotFound(f"{repo.label} not found.")
        now = self._clock()
        archived_date = now.isoformat(timespec="microseconds")

        async with transaction(self.db):
            if await self._find_record(entity_id, entity_type, user_id):
                raise AlreadyArchived()
            if not await repo.exists(self.db, entity_id):
                raise EntityNotFound(f"{repo.label} not found.")
            try:
                cursor = await self.db.execute(
                    "INSERT INTO archives (entity_id, entity_type, archived_by, archived_date, version) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (entity_id, entity_type.value, user_id, archived_date, version_stamp(now)),
                )
            except sqlite3.IntegrityError as exc:
                # Unique index on (entity_id, entity_type, archived_by) lost a race
                raise AlreadyArchived() from exc
            await self._sync_flag(repo, entity_id, entity_type, archived_date)

        return ArchiveOut(
            id=cursor.lastrowid,
            entity_id=entity_id,
            entity_type=entity_type,
            archived_by=user_id,
            archived_date=now,
        )

    async def unarchive(self, entity_id: str, entity_type: EntityType, user_id: str) -> bool:
        """Remove the caller's archive record. Raises ArchiveNotFound if there is none."""
        _require_user(user_id)
        now = self._clock().isoformat(timespec="microseconds")
        repo = self.repositories.get(entity_type)
        if repo is not None:
            entity_id = repo.canonical_id(entity_id)
        try:
            async with transaction(self.db):
                record = None
                if entity_id is not None:
                    record = await self._find_record(entity_id, entity_type, user_id)
                if record is None:
                    raise ArchiveNotFound()
                await self.db.execute("DELETE FROM archives WHERE id = ?", (record["id"],))
                if repo is not None and await repo.exists(self.db, entity_id):
                    still_archived = await self._sync_flag(repo, entity_id, entity_type, now)
                    if still_archived:
                        logger.debug("%s %s remains archived by other users", entity_type.value, entity_id)
        except ArchiveError as exc:
            metrics.record_archive_op("unarchive", exc.code)
            raise
        metrics.record_archive_op("unarchive", "ok")
        logger.info("%s %s unarchived by %s", entity_type.value, entity_id, user_id)
        return True

    async def list_my_archives(self, user_id: str) -> list[ArchiveOut]:
        """All archive records owned by ``user_id``, most recent first."""
        _require_user(user_id)
        rows = await (await self.db.execute(
            f"SELECT {_RECORD_COLUMNS} FROM archives WHERE archived_by = ? "
            "ORDER BY archived_date DESC, id DESC",
            (user_id,),
        )).fetchall()
        return [ArchiveOut.model_validate(dict(r)) for r in rows]


def _require_user(user_id: str):
    if not user_id:
        raise ValueError("user_id is required")
