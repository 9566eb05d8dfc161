"""User service - registration, credentials and profile lookups.

Learn: routes never query User directly. They call this service, which
raises domain exceptions that the API layer maps to status codes:
UserNotFoundError -> 404, EmailTakenError -> 409,
InvalidCredentialsError -> 401.
"""

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parley.auth.password import hash_password, verify_password
from parley.db.models import User


class UserNotFoundError(Exception):
    """Raised when a user id doesn't exist."""


class EmailTakenError(Exception):
    """Raised when registering an email that already has an account."""


class InvalidCredentialsError(Exception):
    """Raised when email/password don't match."""


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(
        self,
        email: str,
        name: str,
        password: str,
        avatar: Optional[str] = None,
    ) -> User:
        email = email.strip().lower()
        if await self.get_by_email(email):
            raise EmailTakenError(f"Email {email} already registered")

        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            avatar=avatar,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration
            await self.db.rollback()
            raise EmailTakenError(f"Email {email} already registered")
        return user

    async def authenticate(self, email: str, password: str) -> User:
        user = await self.get_by_email(email.strip().lower())
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid credentials")
        return user

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def list_users(self, ids: Optional[Iterable[int]] = None) -> list[User]:
        """All users, or only those whose id is in `ids`."""
        q = select(User).order_by(User.id)
        if ids is not None:
            q = q.where(User.id.in_(set(ids)))
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def update_profile(
        self,
        user_id: int,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> User:
        user = await self.get_user(user_id)
        if name is not None:
            user.name = name
        if avatar is not None:
            user.avatar = avatar
        await self.db.commit()
        return user
