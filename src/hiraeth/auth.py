"""HTTP Basic authentication and download access checks for Hiraeth.

Principals live in the ``users`` table with bcrypt password hashes. Object
passwords (``access_secret``) use the same hashing. The lifecycle core only
ever sees the resolved ``owner_id`` and the boolean outcome of
``can_download``.
"""

import asyncio
import base64
import binascii
import logging

import bcrypt
from fastapi import Request

from hiraeth.errors import AccessDenied
from hiraeth.metadata.models import StoredObject, User
from hiraeth.metadata.store import ObjectStore

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72


def hash_secret(plain: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a password or object secret with bcrypt.

    Args:
        plain: The clear-text secret.
        rounds: bcrypt cost factor.

    Returns:
        The bcrypt hash as text.
    """
    hashed = bcrypt.hashpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    """Check a clear-text secret against a bcrypt hash.

    A malformed hash never verifies.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored bcrypt hash is malformed")
        return False


def can_download(obj: StoredObject, caller_id: int | None, presented_secret: str | None) -> bool:
    """Decide whether a caller may download an object.

    The owner is always allowed. Objects without a secret are public.
    Otherwise the presented secret must match.

    Args:
        obj: The committed object.
        caller_id: The resolved principal, or None for anonymous callers.
        presented_secret: The password sent with the request, if any.
    """
    if caller_id is not None and caller_id == obj.owner_id:
        return True
    if obj.access_secret is None:
        return True
    if not presented_secret:
        return False
    return verify_secret(presented_secret, obj.access_secret)


def parse_basic_header(header: str) -> tuple[str, str]:
    """Split an ``Authorization: Basic`` header into name and password.

    Raises:
        AccessDenied: (401) If the header is not valid Basic credentials.
    """
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        raise AccessDenied("Unsupported authorization scheme", http_status=401)
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise AccessDenied("Malformed basic credentials", http_status=401) from None
    name, sep, password = decoded.partition(":")
    if not sep or not name:
        raise AccessDenied("Malformed basic credentials", http_status=401)
    return name, password


class BasicAuthenticator:
    """Resolves HTTP Basic credentials to a principal.

    Attributes:
        store: The object store holding the users table.
        realm: Realm advertised in ``WWW-Authenticate`` challenges.
    """

    def __init__(self, store: ObjectStore, realm: str = "hiraeth") -> None:
        self.store = store
        self.realm = realm

    @property
    def challenge(self) -> str:
        """Value of the ``WWW-Authenticate`` header for 401 responses."""
        return f'Basic realm="{self.realm}", charset="UTF-8"'

    async def authenticate(self, name: str, password: str) -> User:
        """Check a name and password against the users table.

        bcrypt verification runs in a worker thread so the event loop keeps
        serving timers and other requests.

        Raises:
            AccessDenied: (401) If the user is unknown or the password is wrong.
        """
        user = await self.store.get_user_by_name(name)
        if user is None:
            logger.info("Login attempt for unknown user %s", name)
            raise AccessDenied("Invalid credentials", http_status=401)

        if not await asyncio.to_thread(verify_secret, password, user.password):
            logger.info("Failed login for user %s", name)
            raise AccessDenied("Invalid credentials", http_status=401)
        return user

    async def verify_request(self, request: Request) -> User:
        """Resolve the principal of a request.

        Raises:
            AccessDenied: (401) If credentials are missing or invalid.
        """
        header = request.headers.get("authorization")
        if not header:
            raise AccessDenied("Authentication required", http_status=401)
        name, password = parse_basic_header(header)
        return await self.authenticate(name, password)
