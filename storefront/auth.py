"""
Single-admin authentication.

Credentials are stored as a bcrypt hash inside the dataset. Records written
by older deployments used a reversible base64+reverse obfuscation; those are
still readable and get rehashed on the next successful login. The
obfuscation is an encoding, not encryption, and offers no secrecy.

Login issues an itsdangerous timed token carrying an expiry and a per-login
nonce.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

import bcrypt
from itsdangerous import (
    BadSignature,
    SignatureExpired,
    TimestampSigner,
    URLSafeTimedSerializer,
)

from storefront.errors import (
    AuthError,
    CredentialsNotReadyError,
    StoreError,
    ValidationError,
)
from storefront.store import Dataset, DatasetStore

logger = logging.getLogger(__name__)

BCRYPT_SCHEME = "bcrypt"
OBFUSCATED_SCHEME = "obfuscated"
LEGACY_STATIC_TOKEN = "authenticated_admin_token"
MIN_PASSWORD_LENGTH = 6
# bcrypt only looks at the first 72 bytes.
MAX_PASSWORD_BYTES = 72


def obfuscate(text: str) -> str:
    """Legacy reversible encoding: base64, then reversed. Not a security measure."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")[::-1]


def deobfuscate(encoded: str) -> str:
    return base64.b64decode(encoded[::-1], validate=True).decode("utf-8")


def fits_bcrypt(password: str) -> bool:
    return len(password.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("ascii")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        return False


def _same(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


@dataclass
class AdminCredential:
    username: str
    password_hash: str
    scheme: str = BCRYPT_SCHEME

    @classmethod
    def create(cls, username: str, password: str) -> "AdminCredential":
        return cls(username=username, password_hash=hash_password(password))

    @classmethod
    def from_record(cls, record: dict) -> "AdminCredential":
        """Parse a stored credential; raises ValueError when it is unreadable."""
        if record.get("scheme") == BCRYPT_SCHEME:
            username = record.get("username")
            password_hash = record.get("password_hash")
            if not isinstance(username, str) or not isinstance(password_hash, str):
                raise ValueError("bcrypt credential is missing username or hash")
            return cls(username=username, password_hash=password_hash)

        username = record.get("username")
        password = record.get("password")
        if not isinstance(username, str) or not isinstance(password, str):
            raise ValueError("legacy credential is missing username or password")
        try:
            plain_username = deobfuscate(username)
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValueError("legacy credential username is not decodable") from exc
        return cls(
            username=plain_username, password_hash=password, scheme=OBFUSCATED_SCHEME
        )

    def as_dict(self) -> dict:
        if self.scheme == OBFUSCATED_SCHEME:
            return {"username": obfuscate(self.username), "password": self.password_hash}
        return {
            "username": self.username,
            "password_hash": self.password_hash,
            "scheme": self.scheme,
        }

    def matches_password(self, password: str) -> bool:
        if self.scheme == OBFUSCATED_SCHEME:
            return _same(obfuscate(password), self.password_hash)
        return check_password(password, self.password_hash)

    def matches(self, username: str, password: str) -> bool:
        # Check the password even on a username mismatch to keep timing flat.
        password_ok = self.matches_password(password)
        return _same(username, self.username) and password_ok


class _ClockedTimestampSigner(TimestampSigner):
    """``TimestampSigner`` that reads the time from an injectable clock."""

    def __init__(self, *args, clock: Callable[[], float] = time.time, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock

    def get_timestamp(self) -> int:
        return int(self._clock())


class TokenSigner:
    """Issues and checks URL-safe timed tokens carrying the admin subject."""

    salt = "storefront-admin-token"

    def __init__(
        self,
        secret: str | bytes,
        ttl_seconds: int = 900,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._serializer = URLSafeTimedSerializer(
            secret,
            salt=self.salt,
            signer=_ClockedTimestampSigner,
            signer_kwargs={"clock": clock},
        )

    def issue(self, subject: str) -> str:
        now = int(self._clock())
        claims = {
            "sub": subject,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "nonce": secrets.token_hex(8),
        }
        return self._serializer.dumps(claims)

    def decode(self, token: str) -> Optional[dict]:
        """Return the claims of a valid, unexpired token, else None."""
        try:
            claims = self._serializer.loads(token, max_age=self.ttl_seconds)
        except SignatureExpired:
            logger.info("Rejected expired admin token")
            return None
        except BadSignature:
            return None
        if not isinstance(claims, dict) or not isinstance(claims.get("sub"), str):
            return None
        return claims


def parse_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthGate:
    """Checks admin credentials against the dataset and issues bearer tokens."""

    def __init__(
        self,
        store: DatasetStore,
        signer: TokenSigner,
        *,
        default_username: str = "admin",
        default_password: str = "admin123",
        allow_legacy_token: bool = False,
    ):
        self.store = store
        self.signer = signer
        self.default_username = default_username
        self.default_password = default_password
        self.allow_legacy_token = allow_legacy_token

    def _provision(self, dataset: Dataset) -> None:
        dataset.admin_credentials = AdminCredential.create(
            self.default_username, self.default_password
        ).as_dict()
        self.store.save(dataset)
        logger.info(
            "Provisioned default admin credential for user %s", self.default_username
        )

    def _credential(self, dataset: Dataset) -> AdminCredential:
        try:
            return AdminCredential.from_record(dataset.admin_credentials)
        except ValueError as exc:
            logger.error("Stored admin credential is unreadable: %s", exc)
            raise AuthError("Stored admin credential is unreadable") from exc

    def _upgrade_legacy(self, dataset: Dataset, username: str, password: str) -> None:
        if not fits_bcrypt(password):
            logger.warning(
                "Legacy admin password exceeds %d bytes; keeping the legacy record",
                MAX_PASSWORD_BYTES,
            )
            return
        dataset.admin_credentials = AdminCredential.create(username, password).as_dict()
        try:
            self.store.save(dataset)
            logger.info("Upgraded legacy admin credential to bcrypt")
        except StoreError as exc:
            logger.warning("Could not upgrade legacy admin credential: %s", exc)

    def ensure_credentials(self) -> bool:
        """Create the default credential if none is stored. Returns True if created."""
        dataset = self.store.load(allow_fallback=False)
        if dataset.admin_credentials:
            return False
        self._provision(dataset)
        return True

    def login(self, username: str, password: str) -> str:
        if not username or not password:
            raise AuthError("Username and password are required")

        dataset = self.store.load(allow_fallback=False)
        if not dataset.admin_credentials:
            self._provision(dataset)
            raise CredentialsNotReadyError(
                "Admin credentials were not configured; defaults have been created, try again"
            )

        credential = self._credential(dataset)
        if not credential.matches(username, password):
            logger.warning("Failed login attempt for user %s", username)
            raise AuthError("Invalid credentials")

        if credential.scheme != BCRYPT_SCHEME:
            self._upgrade_legacy(dataset, credential.username, password)

        return self.signer.issue(credential.username)

    def claims(self, token: Optional[str]) -> Optional[dict]:
        if not token:
            return None
        if self.allow_legacy_token and _same(token, LEGACY_STATIC_TOKEN):
            return {"sub": self.default_username}
        return self.signer.decode(token)

    def verify(self, token: Optional[str]) -> bool:
        return self.claims(token) is not None

    def change_password(self, current_password: str, new_password: str) -> None:
        if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"New password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if not fits_bcrypt(new_password):
            raise ValidationError(
                f"New password must be at most {MAX_PASSWORD_BYTES} bytes"
            )

        dataset = self.store.load(allow_fallback=False)
        if not dataset.admin_credentials:
            raise AuthError("Admin credentials are not configured")
        credential = self._credential(dataset)
        if not current_password or not credential.matches_password(current_password):
            raise AuthError("Current password is incorrect")

        dataset.admin_credentials = AdminCredential.create(
            credential.username, new_password
        ).as_dict()
        self.store.save(dataset)
        logger.info("Admin password changed for user %s", credential.username)
