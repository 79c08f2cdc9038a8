import logging

from fastapi import Header, HTTPException

from models.auth_user import AuthUser

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


# Dependency function for route-level caller identification
def get_current_user(x_user_id: str = Header(default="", alias=USER_ID_HEADER)) -> AuthUser:
    """Identify the caller from the X-User-Id header set by the upstream gateway"""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return AuthUser(id=user_id)
