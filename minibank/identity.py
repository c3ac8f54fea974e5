"""
Identity Module

User registration and login. Registering a user opens their single account
in the same unit of work, so there is never a user without an account.
Passwords are hashed with scrypt and tokens are HS256 JWTs.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import asyncio
import hashlib
import hmac
import re
import secrets
import uuid

import jwt

from .accounts import Account, AccountStore
from .account_numbers import AccountNumberGenerator, with_fresh_account_number
from .async_storage import AsyncStorageInterface
from .config import MiniBankConfig, get_config
from .errors import (
    EmailAlreadyRegistered, InvalidCredentials, InvalidToken, StorageFailure, ValidationFailed
)
from .logging_config import get_logger, log_action
from .storage import StorageError, StorageRecord, VersionConflictError

USERS_TABLE = "users"
USER_EMAILS_TABLE = "user_emails"

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class User(StorageRecord):
    """Registered user"""
    email: str
    name: str
    password_hash: str
    password_salt: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_salt() -> str:
    """Generate random salt for password hashing"""
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Hash password with salt using scrypt"""
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


def verify_password(user: User, password: str) -> bool:
    """Constant-time comparison of password against the stored hash"""
    if not user.password_hash or not user.password_salt:
        return False
    return hmac.compare_digest(hash_password(password, user.password_salt), user.password_hash)


class UserStore:
    """User storage with a case-insensitive email uniqueness index"""

    def __init__(self, storage: AsyncStorageInterface):
        self.storage = storage
        self.users_table = USERS_TABLE
        self.emails_table = USER_EMAILS_TABLE

    async def create(self, email: str, name: str, password: str) -> User:
        """
        Create a user

        The email index row is insert-only, so a second user with the same
        email makes the commit fail with VersionConflictError on that table.
        """
        now = datetime.now(timezone.utc)
        salt = generate_salt()
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            email=normalize_email(email),
            name=name.strip(),
            password_hash=await asyncio.to_thread(hash_password, password, salt),
            password_salt=salt
        )

        async with self.storage.atomic():
            await self.storage.save(
                self.users_table, user.id, user.to_dict(), expected_version=0
            )
            await self.storage.save(
                self.emails_table, user.email,
                {"id": user.email, "user_id": user.id},
                expected_version=0
            )

        return user

    async def find_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        data = await self.storage.load(self.users_table, user_id)
        if data:
            return self._user_from_dict(data)
        return None

    async def find_by_email(self, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        index = await self.storage.load(self.emails_table, normalize_email(email))
        if not index:
            return None
        return await self.find_by_id(index['user_id'])

    def _user_from_dict(self, data: Dict) -> User:
        return User.from_dict(data)


class IdentityService:
    """
    Registration, login and bearer token handling
    """

    def __init__(
        self,
        storage: AsyncStorageInterface,
        users: UserStore,
        accounts: AccountStore,
        generator: Optional[AccountNumberGenerator] = None,
        config: Optional[MiniBankConfig] = None
    ):
        self.storage = storage
        self.users = users
        self.accounts = accounts
        self.generator = generator or AccountNumberGenerator()
        self.config = config or get_config()
        self.logger = get_logger("minibank.identity")

    async def register(self, email: str, password: str, name: str) -> Tuple[User, Account, str]:
        """
        Register a user and open their account

        Returns:
            Tuple of (user, account, access token)

        Raises:
            ValidationFailed: If email, name or password is unacceptable
            EmailAlreadyRegistered: If the email is already taken
            StorageFailure: If persistence failed or no account number was free
        """
        self._validate_registration(email, password, name)

        async def create_user_and_account(number: str) -> Tuple[User, Account]:
            async with self.storage.atomic():
                user = await self.users.create(email, name, password)
                account = await self.accounts.create(user.id, number)
            return user, account

        try:
            user, account = await with_fresh_account_number(
                self.generator, create_user_and_account,
                self.config.account_number_max_attempts
            )
        except VersionConflictError as e:
            if e.table == USER_EMAILS_TABLE:
                log_action(
                    self.logger, "warning", "Registration rejected: email taken",
                    action="register", resource="auth"
                )
                raise EmailAlreadyRegistered(details={"email": normalize_email(email)}) from e
            raise StorageFailure(details={"operation": "register"}) from e
        except StorageError as e:
            log_action(
                self.logger, "error", f"Storage fault during register: {e}",
                action="register", resource="auth"
            )
            raise StorageFailure(details={"operation": "register"}) from e

        log_action(
            self.logger, "info", "User registered",
            user_id=user.id, action="register", resource="auth",
            extra={"account_id": account.id}
        )
        return user, account, self.issue_token(user)

    async def login(self, email: str, password: str) -> Tuple[User, str]:
        """
        Authenticate by email and password

        Raises:
            InvalidCredentials: If the email is unknown or the password is wrong
        """
        try:
            user = await self.users.find_by_email(email or "")
        except StorageError as e:
            raise StorageFailure(details={"operation": "login"}) from e

        if not user or not await asyncio.to_thread(verify_password, user, password or ""):
            log_action(
                self.logger, "warning", "Authentication failed",
                action="login_failed", resource="auth"
            )
            raise InvalidCredentials()

        log_action(
            self.logger, "info", "User authenticated successfully",
            user_id=user.id, action="login", resource="auth"
        )
        return user, self.issue_token(user)

    def issue_token(self, user: User) -> str:
        """Create a signed access token for the user"""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "email": user.email,
            "iat": now,
            "exp": now + timedelta(hours=self.config.jwt_expiry_hours)
        }
        return jwt.encode(payload, self.config.jwt_secret, algorithm=self.config.jwt_algorithm)

    def verify_token(self, token: str) -> str:
        """
        Validate an access token

        Returns:
            The user id the token was issued to

        Raises:
            InvalidToken: If the token is malformed, tampered with or expired
        """
        try:
            payload = jwt.decode(token, self.config.jwt_secret, algorithms=[self.config.jwt_algorithm])
        except jwt.ExpiredSignatureError as e:
            raise InvalidToken("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise InvalidToken() from e

        user_id = payload.get("sub")
        if not user_id:
            raise InvalidToken()
        return user_id

    def _validate_registration(self, email: str, password: str, name: str) -> None:
        errors = {}
        if not email or not EMAIL_PATTERN.match(email.strip()):
            errors["email"] = "A valid email address is required"
        if not name or not name.strip():
            errors["name"] = "Name is required"
        if not password or len(password) < self.config.password_min_length:
            errors["password"] = (
                f"Password must be at least {self.config.password_min_length} characters"
            )
        if errors:
            raise ValidationFailed(details=errors)
