from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from authservice.logging import get_logger
from authservice.service.email import EmailClient, NotificationError
from authservice.service.errors import (
    IncorrectCredentialsError,
    InvalidCredentialsError,
    MissingTokenError,
    UnexpectedError,
    UserAlreadyExistsError,
)
from authservice.service.passwords import CredentialHasher
from authservice.service.tokens import TokenService
from authservice.storage.common import BannedTokenStore, TwoFACodeStore, UserStore
from authservice.storage.errors import (
    ChallengeNotFound,
    InvalidCredentials,
    StoreError,
    TokenAlreadyBanned,
    UserAlreadyExists,
    UserNotFound,
)
from authservice.storage.models import (
    Email,
    LoginAttemptId,
    Password,
    TokenClaims,
    TwoFACode,
    User,
)

TWO_FA_SUBJECT = "2FA Code"


@dataclass(frozen=True)
class LoginResult:
    """Either a session token or a pending second-factor attempt id."""

    token: Optional[str] = None
    login_attempt_id: Optional[LoginAttemptId] = None

    @property
    def requires_2fa(self) -> bool:
        return self.login_attempt_id is not None


def _parse_credentials(email: str, password: str) -> tuple[Email, Password]:
    try:
        return Email.parse(email), Password.parse(password)
    except ValueError as exc:
        raise InvalidCredentialsError(str(exc)) from exc


def _unexpected(logger, event: str, exc: StoreError) -> UnexpectedError:
    logger.error(event, error=exc.message, error_type=type(exc).__name__)
    return UnexpectedError("unexpected error")


class AuthService:
    """Signup, login, second-factor verification, logout and token checks.

    Store and transport failures are logged here and surfaced as
    ``UnexpectedError`` without their internal detail.
    """

    def __init__(
        self,
        user_store: UserStore,
        banned_token_store: BannedTokenStore,
        two_fa_code_store: TwoFACodeStore,
        email_client: EmailClient,
        token_service: TokenService,
        password_hasher: CredentialHasher,
    ) -> None:
        self.user_store = user_store
        self.banned_token_store = banned_token_store
        self.two_fa_code_store = two_fa_code_store
        self.email_client = email_client
        self.token_service = token_service
        self.password_hasher = password_hasher
        self.logger = get_logger(__name__)

    async def signup(self, email: str, password: str, requires_2fa: bool) -> None:
        parsed_email, parsed_password = _parse_credentials(email, password)
        try:
            password_hash = await self.password_hasher.hash_password(parsed_password)
            await self.user_store.add_user(
                User(
                    email=parsed_email,
                    password_hash=password_hash,
                    requires_2fa=requires_2fa,
                )
            )
        except UserAlreadyExists as exc:
            self.logger.info("signup_rejected", reason="user_exists")
            raise UserAlreadyExistsError("user already exists") from exc
        except StoreError as exc:
            raise _unexpected(self.logger, "signup_failed", exc) from exc
        self.logger.info("signup_completed", requires_2fa=requires_2fa)

    async def login(self, email: str, password: str) -> LoginResult:
        parsed_email, parsed_password = _parse_credentials(email, password)
        try:
            user = await self.user_store.get_user(parsed_email)
            await self.user_store.validate_user(parsed_email, parsed_password)
        except UserNotFound as exc:
            self.logger.info("login_rejected", reason="unknown_user")
            raise InvalidCredentialsError("invalid credentials") from exc
        except InvalidCredentials as exc:
            self.logger.info("login_rejected", reason="password_mismatch")
            raise IncorrectCredentialsError("incorrect credentials") from exc
        except StoreError as exc:
            raise _unexpected(self.logger, "login_failed", exc) from exc

        if not user.requires_2fa:
            self.logger.info("login_completed", two_factor=False)
            return LoginResult(token=self.token_service.issue(parsed_email))

        try:
            login_attempt_id, code = await self.two_fa_code_store.issue(parsed_email)
        except StoreError as exc:
            raise _unexpected(self.logger, "two_fa_issue_failed", exc) from exc
        try:
            await self.email_client.send_email(parsed_email, TWO_FA_SUBJECT, code.value)
        except NotificationError as exc:
            self.logger.error("two_fa_dispatch_failed", error=str(exc))
            raise UnexpectedError("unexpected error") from exc
        self.logger.info("login_challenge_issued", two_factor=True)
        return LoginResult(login_attempt_id=login_attempt_id)

    async def verify_2fa(self, email: str, login_attempt_id: str, code: str) -> str:
        try:
            parsed_email = Email.parse(email)
            parsed_id = LoginAttemptId.parse(login_attempt_id)
            parsed_code = TwoFACode.parse(code)
        except ValueError as exc:
            raise InvalidCredentialsError(str(exc)) from exc

        try:
            await self.two_fa_code_store.verify(parsed_email, parsed_id, parsed_code)
        except ChallengeNotFound as exc:
            self.logger.info("two_fa_rejected")
            raise IncorrectCredentialsError("incorrect credentials") from exc
        except StoreError as exc:
            raise _unexpected(self.logger, "two_fa_verify_failed", exc) from exc

        try:
            cleared = await self.two_fa_code_store.clear(parsed_email)
        except StoreError as exc:
            raise _unexpected(self.logger, "two_fa_clear_failed", exc) from exc
        if not cleared:
            # A concurrent verification consumed the challenge after our check
            self.logger.info("two_fa_rejected", reason="challenge_consumed")
            raise IncorrectCredentialsError("incorrect credentials")
        self.logger.info("two_fa_verified")
        return self.token_service.issue(parsed_email)

    async def logout(self, token: Optional[str]) -> None:
        if not token:
            self.logger.info("logout_rejected", reason="missing_token")
            raise MissingTokenError("missing token")
        claims = await self.token_service.validate(token, self.banned_token_store)
        try:
            await self.banned_token_store.add_token(
                token, ttl_seconds=self.token_service.remaining_ttl(claims)
            )
        except TokenAlreadyBanned:
            # Concurrent logouts may both pass validation before either bans
            self.logger.info("logout_duplicate_ban", jti=claims.jti)
        except StoreError as exc:
            raise _unexpected(self.logger, "logout_ban_failed", exc) from exc
        self.logger.info("logout_completed", jti=claims.jti)

    async def verify_token(self, token: str) -> TokenClaims:
        claims = await self.token_service.validate(token, self.banned_token_store)
        self.logger.debug("token_verified", jti=claims.jti)
        return claims


__all__ = ["AuthService", "LoginResult", "TWO_FA_SUBJECT"]
