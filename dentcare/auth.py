import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .models import User
from .security_utils import log_security_event, mask_sensitive_data, verify_jwt_token

logger = logging.getLogger(__name__)

security = HTTPBearer()


@dataclass
class AuditContext:
    """Who is acting and from where - attached to every audit entry"""

    user_id: int
    user_name: Optional[str]
    user_role: Optional[str]
    clinic_id: Optional[int]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from a session JWT"""

    if not credentials:
        logger.error("❌ No credentials provided")
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    token = credentials.credentials
    client_ip = request.client.host if request.client else None

    payload = verify_jwt_token(token)
    if not payload:
        log_security_event("failed_auth", ip_address=client_ip, details={"token": mask_sensitive_data(token)})
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    open_id = payload.get("sub")
    if not open_id:
        logger.error(f"❌ Token missing subject claim. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token: missing subject")

    user = db.query(User).filter(User.open_id == open_id).first()
    if not user:
        log_security_event("unknown_user", user_id=open_id, ip_address=client_ip)
        raise HTTPException(status_code=401, detail="User not found")

    user.last_signed_in = datetime.utcnow()
    db.commit()

    logger.debug(f"✅ Authenticated user {user.id} (clinic {user.clinic_id})")
    return user


async def get_current_clinic_user(
    user: User = Depends(get_current_user),
) -> User:
    """
    Get current user and verify they belong to a clinic.
    Every clinic-scoped route uses this dependency.
    """
    if not user.clinic_id:
        logger.warning(f"⚠️ User {user.id} attempted to access clinic data without a clinic")
        raise HTTPException(status_code=403, detail="User is not associated with a clinic")
    return user


async def get_current_dentist_user(
    user: User = Depends(get_current_clinic_user),
) -> User:
    """Get current user and verify the account is linked to a dentist"""
    if not user.dentist_id:
        logger.warning(f"⚠️ User {user.id} is not a dentist")
        raise HTTPException(status_code=403, detail="Only dentists can perform this action")
    return user


async def get_current_admin_user(
    user: User = Depends(get_current_clinic_user),
) -> User:
    """Get current user and verify they administer their clinic"""
    if user.role != "admin":
        logger.warning(f"⚠️ User {user.id} attempted an admin action without the admin role")
        raise HTTPException(status_code=403, detail="Only clinic admins can perform this action")
    return user


def get_audit_context(
    request: Request,
    user: User = Depends(get_current_clinic_user),
) -> AuditContext:
    """Build the audit context for the current request"""
    return AuditContext(
        user_id=user.id,
        user_name=user.name,
        user_role=user.role,
        clinic_id=user.clinic_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
