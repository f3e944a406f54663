"""AuthService: account registration, login, and token issuance."""

import uuid

import structlog
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.security import create_access_token, hash_password, normalize_email, verify_password
from app.db.models.user import SUBSCRIPTION_INACTIVE, User
from app.schemas.auth import AuthResponse, CreateUserRequest, LoginUserRequest, UserResponse

logger = structlog.get_logger(__name__)


def _constraint_detail(exc: IntegrityError, email: str) -> str:
    """Best-effort human readable detail for a unique violation.

    asyncpg exposes ``detail`` on the driver exception (wrapped by SQLAlchemy's
    adapter); other drivers only carry a message.
    """
    orig = exc.orig
    detail = getattr(orig, "detail", None) or getattr(getattr(orig, "__cause__", None), "detail", None)
    return detail or f"Key (email)=({email}) already exists."


class AuthService:
    """Service layer for the ``/auth`` endpoints."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self.session_factory = session_factory
        self.settings = settings

    def issue_token(self, user: User) -> str:
        return create_access_token(str(user.id), self.settings)

    def _auth_response(self, user: User) -> AuthResponse:
        data = UserResponse.model_validate(user).model_dump()
        return AuthResponse(**data, token=self.issue_token(user))

    async def register(self, payload: CreateUserRequest) -> AuthResponse:
        """Create an account and return it with a signed token.

        Raises:
            HTTPException(400): email already registered
            HTTPException(500): any other database failure
        """
        email = normalize_email(payload.email)
        user = User(
            email=email,
            password=hash_password(payload.password, rounds=self.settings.bcrypt_rounds),
            full_name=payload.full_name,
            is_active=True,
            roles=["user"],
            subscription_status=SUBSCRIPTION_INACTIVE,
        )

        async with self.session_factory() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info("user_register_duplicate", email=email)
                raise HTTPException(status_code=400, detail=_constraint_detail(exc, email))
            except SQLAlchemyError:
                await session.rollback()
                logger.error("user_register_failed", email=email, exc_info=True)
                raise HTTPException(status_code=500, detail="Unexpected error, check server logs")
            await session.refresh(user)

        logger.info("user_registered", user_id=str(user.id))
        return self._auth_response(user)

    async def login(self, payload: LoginUserRequest) -> AuthResponse:
        email = normalize_email(payload.email)
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

        if user is None:
            raise HTTPException(status_code=400, detail="Credentials are not valid (email)")

        if not verify_password(payload.password, user.password):
            logger.info("user_login_rejected", user_id=str(user.id))
            raise HTTPException(status_code=400, detail="Credentials are not valid (password)")

        return self._auth_response(user)

    def check_auth_status(self, user: User) -> AuthResponse:
        """Return the caller's representation with a refreshed token."""
        return self._auth_response(user)

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        async with self.session_factory() as session:
            return await session.get(User, user_id)
