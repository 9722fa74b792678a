from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from medialist.logging import get_logger
from medialist.storage.common import (
    append_items,
    drop_items,
    patch_item,
    pull_item_tag,
)
from medialist.storage.errors import DuplicateKey
from medialist.storage.models import Item, MediaList, SharedList, User

_INDEX_COLUMNS = {"statusBased": "status_based", "themeBased": "theme_based"}
_USER_COLUMNS = {"name", "username", "email", "profile_type", "avatar"}
_LIST_COLUMNS = {"name", "privacy"}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        username TEXT NOT NULL,
        email TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        profile_type TEXT NOT NULL DEFAULT 'public',
        refresh_token TEXT,
        avatar TEXT,
        status_based JSONB NOT NULL DEFAULT '[]'::jsonb,
        theme_based JSONB NOT NULL DEFAULT '[]'::jsonb,
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        friends JSONB NOT NULL DEFAULT '[]'::jsonb,
        friend_requests JSONB NOT NULL DEFAULT '[]'::jsonb,
        shared_lists JSONB NOT NULL DEFAULT '[]'::jsonb,
        collaborative_lists JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_username_uniq ON app_user (lower(username))",
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_uniq ON app_user (lower(email))",
    """
    CREATE TABLE IF NOT EXISTS media_list (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        privacy TEXT NOT NULL DEFAULT 'public',
        name TEXT,
        items JSONB NOT NULL DEFAULT '[]'::jsonb,
        added_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresStore:
    """Postgres-backed document store for users and their lists."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready")

    def close(self) -> None:
        self.pool.close()

    def ping(self) -> bool:
        with self._connect() as conn:
            conn.execute("SELECT 1")
        return True

    @staticmethod
    def _duplicate_key(exc: errors.UniqueViolation, username: str, email: str) -> DuplicateKey:
        constraint = getattr(exc.diag, "constraint_name", "") or ""
        if "username" in constraint:
            return DuplicateKey("username", username)
        return DuplicateKey("email", email)

    # -- row mapping -------------------------------------------------------

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            name=row["name"],
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            profile_type=row.get("profile_type") or "public",
            refresh_token=row.get("refresh_token"),
            avatar=row.get("avatar"),
            status_based=list(row.get("status_based") or []),
            theme_based=list(row.get("theme_based") or []),
            tags=list(row.get("tags") or []),
            friends=list(row.get("friends") or []),
            friend_requests=list(row.get("friend_requests") or []),
            shared_lists=[
                SharedList(
                    list_id=entry["list"],
                    shared_by=entry["sharedBy"],
                    shared_to=entry["sharedTo"],
                )
                for entry in row.get("shared_lists") or []
            ],
            collaborative_lists=list(row.get("collaborative_lists") or []),
            created_at=row.get("created_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    @staticmethod
    def _row_to_list(row: Dict[str, Any]) -> MediaList:
        return MediaList(
            id=str(row["id"]),
            type=row["type"],
            privacy=row["privacy"],
            name=row.get("name"),
            items=[Item.from_dict(raw) for raw in row.get("items") or []],
            added_at=row.get("added_at", datetime.utcnow()),
            updated_at=row.get("updated_at", datetime.utcnow()),
        )

    def _fetch_user(self, conn, user_id: str) -> Optional[User]:
        row = conn.execute("SELECT * FROM app_user WHERE id = %s", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    # -- users -------------------------------------------------------------

    def create_user(
        self,
        name: str,
        username: str,
        email: str,
        password_hash: str,
        *,
        profile_type: str = "public",
        avatar: Optional[str] = None,
    ) -> User:
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, name, username, email, password_hash, profile_type, avatar)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, name, username, email, password_hash, profile_type, avatar),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise self._duplicate_key(exc, username, email) from exc
        return self._row_to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            return self._fetch_user(conn, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE lower(username) = lower(%s)", (username,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE lower(email) = lower(%s)", (email,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def search_users_by_name(
        self, fragment: str, *, public_only: bool = True, limit: int = 50
    ) -> List[User]:
        query = "SELECT * FROM app_user WHERE name ILIKE %s ESCAPE '\\'"
        params: List[Any] = [f"%{_escape_like(fragment)}%"]
        if public_only:
            query += " AND profile_type = 'public'"
        query += " ORDER BY created_at LIMIT %s"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_user(row) for row in rows]

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[User]:
        fields = {k: v for k, v in updates.items() if k in _USER_COLUMNS and v is not None}
        if not fields:
            return self.get_user(user_id)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder())
            for column in fields
        )
        statement = sql.SQL(
            "UPDATE app_user SET {assignments}, updated_at = now() WHERE id = %s RETURNING *"
        ).format(assignments=assignments)
        try:
            with self._connect() as conn:
                row = conn.execute(statement, [*fields.values(), user_id]).fetchone()
        except errors.UniqueViolation as exc:
            raise self._duplicate_key(
                exc, fields.get("username", ""), fields.get("email", "")
            ) from exc
        return self._row_to_user(row) if row else None

    def set_password_hash(self, user_id: str, password_hash: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET password_hash = %s, updated_at = now() WHERE id = %s RETURNING *",
                (password_hash, user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def set_refresh_token(self, user_id: str, refresh_token: Optional[str]) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET refresh_token = %s WHERE id = %s RETURNING *",
                (refresh_token, user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
            return cur.rowcount > 0

    def add_user_tag(self, user_id: str, tag: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_user
                SET tags = CASE WHEN tags ? %s THEN tags ELSE tags || to_jsonb(%s::text) END,
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (tag, tag, user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def remove_user_tag(self, user_id: str, tag: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET tags = tags - %s, updated_at = now() WHERE id = %s RETURNING *",
                (tag, user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def attach_list(self, user_id: str, list_id: str, list_type: str) -> Optional[User]:
        column = sql.Identifier(_INDEX_COLUMNS[list_type])
        statement = sql.SQL(
            """
            UPDATE app_user
            SET {col} = CASE WHEN {col} ? %s THEN {col} ELSE {col} || to_jsonb(%s::text) END,
                updated_at = now()
            WHERE id = %s
            RETURNING *
            """
        ).format(col=column)
        with self._connect() as conn:
            row = conn.execute(statement, (list_id, list_id, user_id)).fetchone()
        return self._row_to_user(row) if row else None

    def detach_list(self, user_id: str, list_id: str, list_type: str) -> Optional[User]:
        column = sql.Identifier(_INDEX_COLUMNS[list_type])
        statement = sql.SQL(
            "UPDATE app_user SET {col} = {col} - %s, updated_at = now() WHERE id = %s RETURNING *"
        ).format(col=column)
        with self._connect() as conn:
            row = conn.execute(statement, (list_id, user_id)).fetchone()
        return self._row_to_user(row) if row else None

    # -- lists -------------------------------------------------------------

    def _lock_list(self, conn, list_id: str) -> Optional[MediaList]:
        row = conn.execute(
            "SELECT * FROM media_list WHERE id = %s FOR UPDATE", (list_id,)
        ).fetchone()
        return self._row_to_list(row) if row else None

    def _write_items(self, conn, media_list: MediaList) -> MediaList:
        row = conn.execute(
            "UPDATE media_list SET items = %s, updated_at = now() WHERE id = %s RETURNING *",
            (Jsonb([item.to_dict() for item in media_list.items]), media_list.id),
        ).fetchone()
        return self._row_to_list(row)

    def create_list(
        self,
        list_type: str,
        *,
        privacy: str = "public",
        name: Optional[str] = None,
        items: Optional[Iterable[Item]] = None,
        list_id: Optional[str] = None,
    ) -> MediaList:
        media_list = MediaList.new(list_type, privacy=privacy, name=name, list_id=list_id)
        append_items(media_list, items or [])
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO media_list (id, type, privacy, name, items, added_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    media_list.id,
                    media_list.type,
                    media_list.privacy,
                    media_list.name,
                    Jsonb([item.to_dict() for item in media_list.items]),
                    media_list.added_at,
                    media_list.updated_at,
                ),
            ).fetchone()
        return self._row_to_list(row)

    def get_list(self, list_id: str) -> Optional[MediaList]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM media_list WHERE id = %s", (list_id,)).fetchone()
        return self._row_to_list(row) if row else None

    def delete_list(self, list_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM media_list WHERE id = %s", (list_id,))
            return cur.rowcount > 0

    def update_list(self, list_id: str, updates: Dict[str, Any]) -> Optional[MediaList]:
        fields = {k: v for k, v in updates.items() if k in _LIST_COLUMNS and v is not None}
        if not fields:
            return self.get_list(list_id)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder())
            for column in fields
        )
        statement = sql.SQL(
            "UPDATE media_list SET {assignments}, updated_at = now() WHERE id = %s RETURNING *"
        ).format(assignments=assignments)
        with self._connect() as conn:
            row = conn.execute(statement, [*fields.values(), list_id]).fetchone()
        return self._row_to_list(row) if row else None

    def add_items(self, list_id: str, items: Iterable[Item]) -> Optional[MediaList]:
        with self._connect() as conn:
            media_list = self._lock_list(conn, list_id)
            if not media_list:
                return None
            append_items(media_list, items)
            return self._write_items(conn, media_list)

    def remove_items(self, list_id: str, media_ids: Iterable[str]) -> Optional[MediaList]:
        with self._connect() as conn:
            media_list = self._lock_list(conn, list_id)
            if not media_list:
                return None
            if not drop_items(media_list, media_ids):
                return media_list
            return self._write_items(conn, media_list)

    def update_item(
        self, list_id: str, media_id: str, updates: Dict[str, Any]
    ) -> Optional[MediaList]:
        # Row lock keeps the type check and the write in one transaction
        with self._connect() as conn:
            media_list = self._lock_list(conn, list_id)
            if not media_list:
                return None
            patch_item(media_list, media_id, updates)
            return self._write_items(conn, media_list)

    def remove_tag_from_items(self, list_ids: Iterable[str], tag: str) -> int:
        ids = sorted(set(list_ids))
        if not ids:
            return 0
        modified = 0
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM media_list WHERE id = ANY(%s) ORDER BY id FOR UPDATE",
                (ids,),
            ).fetchall()
            for row in rows:
                media_list = self._row_to_list(row)
                if pull_item_tag(media_list, tag):
                    self._write_items(conn, media_list)
                    modified += 1
        return modified
