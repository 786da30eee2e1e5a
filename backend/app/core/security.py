"""Authentication dependencies and API access logging"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.logging import api_access_logger, security_logger
from app.db.redis import get_session
from app.db.session import get_db
from app.models.user import User

logger = logging.getLogger(__name__)


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise HTTPException(401, "Session expired. Please log in again.")

    return user_id


def require_user(user_id: int = Depends(require_auth), db: Session = Depends(get_db)) -> User:
    """Dependency: Resolve the authenticated user row"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(401, "User no longer exists. Please log in again.")
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    """Dependency: Require admin role"""
    if not user.is_admin:
        security_logger.warning(f"Non-admin user {user.id} attempted an admin operation")
        raise HTTPException(403, "Admin access required")
    return user


def log_api_access(
    request: Request,
    status_code: int = 200,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "duration_ms": round(duration_ms, 1) if duration_ms is not None else None,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
