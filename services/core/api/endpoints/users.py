"""
Users API Endpoints Module
Registration only; authentication is handled upstream.
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_users
from schemas import UserCreate, UserResponse
from user_service import UserService

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
async def register_user(payload: UserCreate, users: UserService = Depends(get_users)):
    return await users.register(payload.email, payload.name)
