from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from authservice.logging import get_logger
from authservice.service.passwords import CredentialHasher
from authservice.storage.errors import (
    BackendUnavailable,
    InvalidCredentials,
    UserAlreadyExists,
    UserNotFound,
)
from authservice.storage.models import Email, Password, User


class PostgresUserStore:
    """Postgres-backed credential store.

    Blocking psycopg calls run on worker threads so the event loop never waits
    on the database. The ``users`` table is created on startup if missing.
    """

    def __init__(
        self,
        dsn: str,
        hasher: CredentialHasher,
        *,
        min_size: int = 2,
        max_size: int = 10,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self.dsn = dsn
        self.hasher = hasher
        self.logger = get_logger(__name__)
        self.pool = pool or ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_users_table()

    def _connect(self):
        return self.pool.connection()

    def _ensure_users_table(self) -> None:
        """Create the ``users`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    email TEXT PRIMARY KEY,
                    password_hash TEXT NOT NULL,
                    requires_2fa BOOLEAN NOT NULL DEFAULT FALSE
                )
                """
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    def _insert_user(self, user: User) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (email, password_hash, requires_2fa)
                    VALUES (%s, %s, %s)
                    """,
                    (user.email.value, user.password_hash, user.requires_2fa),
                )
        except errors.UniqueViolation as exc:
            raise UserAlreadyExists("email already exists", {"field": "email"}) from exc
        except psycopg.Error as exc:
            self.logger.error("user_insert_failed", error=str(exc))
            raise BackendUnavailable("user insert failed", {"error": str(exc)}) from exc

    def _select_user(self, email: Email) -> Optional[Dict[str, Any]]:
        try:
            with self._connect() as conn:
                return conn.execute(
                    "SELECT email, password_hash, requires_2fa FROM users WHERE email = %s",
                    (email.value,),
                ).fetchone()
        except psycopg.Error as exc:
            self.logger.error("user_lookup_failed", error=str(exc))
            raise BackendUnavailable("user lookup failed", {"error": str(exc)}) from exc

    async def add_user(self, user: User) -> None:
        await asyncio.to_thread(self._insert_user, user)

    async def get_user(self, email: Email) -> User:
        row = await asyncio.to_thread(self._select_user, email)
        if not row:
            raise UserNotFound("user not found", {"email": email.value})
        return User(
            email=Email(row["email"]),
            password_hash=row["password_hash"],
            requires_2fa=bool(row.get("requires_2fa", False)),
        )

    async def validate_user(self, email: Email, password: Password) -> None:
        user = await self.get_user(email)
        if not await self.hasher.verify_password(user.password_hash, password):
            raise InvalidCredentials("password mismatch", {"email": email.value})


__all__ = ["PostgresUserStore"]
