from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from procurement.services.auth_service import verify_access_token

logger = structlog.get_logger()

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """FastAPI dependency: verify the bearer token and return the actor."""
    try:
        payload = verify_access_token(credentials.credentials)
    except (JWTError, OSError) as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor = {
        "user_id": payload["sub"],
        "role": payload["role"],
        "email": payload.get("email"),
        "department_id": payload.get("department_id"),
    }
    structlog.contextvars.bind_contextvars(user_id=actor["user_id"])
    return actor
