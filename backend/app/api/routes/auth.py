"""Auth routes: register, login, and token refresh."""

from fastapi import APIRouter, Depends

from app.api.deps import get_auth_service
from app.core.auth import require_auth
from app.db.models.user import User
from app.schemas.auth import AuthResponse, CreateUserRequest, LoginUserRequest
from app.services.auth_service import AuthService

router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: CreateUserRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create an account. The email must be unique."""
    return await auth_service.register(body)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginUserRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    return await auth_service.login(body)


@router.get("/check-auth-status", response_model=AuthResponse)
async def check_auth_status(
    user: User = Depends(require_auth),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Return the authenticated user with a refreshed token."""
    return auth_service.check_auth_status(user)
