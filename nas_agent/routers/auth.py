"""
Login endpoint.
"""

import logging

from fastapi import APIRouter, Depends

from nas_agent.db.repository import UserRepository
from nas_agent.deps import get_user_repository
from nas_agent.errors import AuthenticationError
from nas_agent.models.share import LoginRequest, LoginResponse
from nas_agent.services.auth import issue_token, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(
    request: LoginRequest,
    users: UserRepository = Depends(get_user_repository)
):
    """
    Exchange email and password for a bearer token.
    """
    user = users.get_by_email(request.username)
    if user is None:
        raise AuthenticationError("invalid credential, user not found")
    if not verify_password(request.password, user.password_hash):
        logger.warning(f"Failed login for {request.username}")
        raise AuthenticationError("invalid password")
    return LoginResponse(token=issue_token(user))
