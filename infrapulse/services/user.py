import asyncio
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from infrapulse.models.user import User
from infrapulse.schemas.user import UserCreate
from infrapulse.core.exceptions import ValidationError
from infrapulse.core import security

class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _hash_password(self, password: str) -> str:
        """bcrypt is CPU bound, keep it off the event loop"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, security.get_password_hash, password)

    async def create_user(self, user_data: UserCreate) -> User:
        if await self.get_user_by_username(user_data.username):
            raise ValidationError("Username already exists")

        if await self.get_user_by_email(user_data.email):
            raise ValidationError("Email already exists")

        password_hash = await self._hash_password(user_data.password)

        db_user = User(
            username=user_data.username,
            email=user_data.email,
            password_hash=password_hash,
            role=user_data.role,
            full_name=user_data.full_name,
            is_active=user_data.is_active,
        )

        self.db.add(db_user)
        await self.db.commit()
        await self.db.refresh(db_user)
        return db_user

    async def get_user(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()
