"""Per-entity access to the mirrored ``is_archived`` flag.

The archive service only needs to know whether an entity exists and how to
flip its flag. Each archivable table gets one repository; the service picks
the repository from ``FLAG_REPOSITORIES`` by entity type.
"""

from typing import Optional, Protocol

import aiosqlite

from ..models.archive import EntityType


class EntityFlagRepository(Protocol):
    label: str

    def parse_key(self, entity_id: str) -> Optional[object]:
        """Convert the ledger's opaque id into the table key, or None if it can't be one."""

    def canonical_id(self, entity_id: str) -> Optional[str]:
        """The single ledger spelling of ``entity_id``, or None if it can't be a key."""

    async def exists(self, db: aiosqlite.Connection, entity_id: str) -> bool:
        ...

    async def set_archived(self, db: aiosqlite.Connection, entity_id: str,
                           archived: bool, when: str) -> None:
        ...


class _TableFlagRepository:
    """Flag repository for a table with an ``is_archived`` column."""

    key_column = "id"
    has_archive_date = False

    def __init__(self, table: str, label: str, integer_key: bool):
        self.table = table
        self.label = label
        self.integer_key = integer_key

    def parse_key(self, entity_id: str):
        if not entity_id:
            return None
        if not self.integer_key:
            return entity_id
        try:
            return int(entity_id)
        except ValueError:
            return None

    def canonical_id(self, entity_id: str) -> Optional[str]:
        # "042", "+42" and "42" are the same project row
        key = self.parse_key(entity_id)
        return None if key is None else str(key)

    async def exists(self, db: aiosqlite.Connection, entity_id: str) -> bool:
        key = self.parse_key(entity_id)
        if key is None:
            return False
        row = await (await db.execute(
            f"SELECT 1 FROM {self.table} WHERE {self.key_column} = ?", (key,)
        )).fetchone()
        return row is not None

    async def set_archived(self, db: aiosqlite.Connection, entity_id: str,
                           archived: bool, when: str) -> None:
        key = self.parse_key(entity_id)
        if key is None:
            return
        if self.has_archive_date:
            # archive_date records when the flag turned on; unchanged while it stays on
            await db.execute(
                f"UPDATE {self.table} SET is_archived = ?, "
                "archive_date = CASE WHEN ? THEN COALESCE(archive_date, ?) ELSE NULL END, "
                f"updated_at = ? WHERE {self.key_column} = ?",
                (int(archived), int(archived), when, when, key),
            )
        else:
            await db.execute(
                f"UPDATE {self.table} SET is_archived = ? WHERE {self.key_column} = ?",
                (int(archived), key),
            )


class ProjectFlagRepository(_TableFlagRepository):
    has_archive_date = True

    def __init__(self):
        super().__init__("projects", "Project", integer_key=True)


class UserFlagRepository(_TableFlagRepository):
    has_archive_date = True

    def __init__(self):
        super().__init__("users", "User", integer_key=False)


class MessageFlagRepository(_TableFlagRepository):
    def __init__(self):
        super().__init__("messages", "Message", integer_key=True)


FLAG_REPOSITORIES: dict[EntityType, EntityFlagRepository] = {
    EntityType.PROJECT: ProjectFlagRepository(),
    EntityType.USER: UserFlagRepository(),
    EntityType.MESSAGE: MessageFlagRepository(),
}
