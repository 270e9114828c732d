import logging
from dataclasses import dataclass

from passlib.context import CryptContext

from taskly.services.firestore_service import FirestoreService


logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthServiceError(Exception):
    pass


@dataclass
class AuthResult:
    uid: str
    email: str
    authenticated: bool


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def check_password(password: str, stored: str) -> bool:
    if not stored:
        return False
    try:
        return pwd_context.verify(password, stored)
    except ValueError:
        # Not a hash passlib recognises.
        return False


class AuthService:
    """
    Email/password accounts stored in the users collection.

    The `authenticated` field is a plain flag toggled by login/logout; it is
    not a session and carries no security guarantees.
    """

    def __init__(self, store: FirestoreService) -> None:
        self.store = store

    async def sign_up(self, email: str, password: str) -> AuthResult:
        email = email.strip()
        if not email or not password:
            raise AuthServiceError("email and password are required")
        if await self.store.find_user_by_email(email):
            raise AuthServiceError("Email already registered")

        uid = await self.store.create_user(email, hash_password(password))
        logger.info("Created user %s", uid)
        return AuthResult(uid=uid, email=email, authenticated=True)

    async def log_in(self, email: str, password: str) -> AuthResult:
        email = email.strip()
        user = await self.store.find_user_by_email(email)
        if not user or not check_password(password, user.get("password", "")):
            logger.info("Rejected login for %s", email)
            raise AuthServiceError("User not found, check your credentials")

        await self.store.set_authenticated(user["id"], True)
        return AuthResult(uid=user["id"], email=user.get("email", email), authenticated=True)

    async def log_out(self, uid: str) -> None:
        if not await self.store.get_user(uid):
            raise AuthServiceError("User not found")
        await self.store.set_authenticated(uid, False)

    async def verify(self, uid: str) -> bool:
        user = await self.store.get_user(uid)
        if not user:
            raise AuthServiceError("User not found")
        return bool(user.get("authenticated"))
