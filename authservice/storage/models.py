from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


@dataclass(frozen=True)
class Email:
    value: str

    @classmethod
    def parse(cls, raw: str) -> "Email":
        if not isinstance(raw, str) or not raw or "@" not in raw:
            raise ValueError("invalid email address")
        return cls(raw)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Password:
    value: str = field(repr=False)

    MIN_LENGTH = 8

    @classmethod
    def parse(cls, raw: str) -> "Password":
        if not isinstance(raw, str) or len(raw) < cls.MIN_LENGTH:
            raise ValueError(f"password must be at least {cls.MIN_LENGTH} characters")
        return cls(raw)


@dataclass(frozen=True)
class LoginAttemptId:
    value: str

    @classmethod
    def parse(cls, raw: str) -> "LoginAttemptId":
        try:
            parsed = uuid.UUID(str(raw))
        except (TypeError, ValueError) as exc:
            raise ValueError("login attempt id must be a UUID") from exc
        return cls(str(parsed))

    @classmethod
    def new(cls, rng: random.Random | None = None) -> "LoginAttemptId":
        if rng is None:
            return cls(str(uuid.uuid4()))
        return cls(str(uuid.UUID(int=rng.getrandbits(128), version=4)))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TwoFACode:
    value: str

    DIGITS = 6

    @classmethod
    def parse(cls, raw: str) -> "TwoFACode":
        if (
            not isinstance(raw, str)
            or len(raw) != cls.DIGITS
            or not raw.isascii()
            or not raw.isdigit()
        ):
            raise ValueError(f"2FA code must be {cls.DIGITS} digits")
        return cls(raw)

    @classmethod
    def new(cls, rng: random.Random) -> "TwoFACode":
        return cls(str(rng.randint(100000, 999999)))

    def __str__(self) -> str:
        return self.value


@dataclass
class User:
    email: Email
    password_hash: str = field(repr=False)
    requires_2fa: bool = False


@dataclass
class Challenge:
    email: Email
    login_attempt_id: LoginAttemptId
    code: TwoFACode
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: int = 600

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    iat: int
    exp: int
    jti: str
