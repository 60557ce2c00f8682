"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Getting the current authenticated coach from a bearer JWT
- Role-based access control (coach / admin)
- Ownership checks on customers and invites (admins see everything)
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from core.security import decode_access_token
from models import Coach, Customer, Invite

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def get_current_coach(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Coach:
    """
    Get the current authenticated coach from the JWT ``sub`` claim.

    Raises 401 if the token is missing/invalid or the coach is unknown,
    403 if the coach account is deactivated.
    """
    if not credentials:
        raise UnauthorizedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload")

    try:
        user_id_uuid = UUID(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user ID format")

    coach = db.query(Coach).filter(Coach.id == user_id_uuid).first()
    if not coach:
        raise UnauthorizedError("User not found")

    if not coach.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )

    return coach


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/admin-only")
        def admin_endpoint(user: Coach = Depends(require_role(["admin"]))):
            ...
    """
    def role_checker(current_user: Coach = Depends(get_current_coach)) -> Coach:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {allowed_roles}",
            )
        return current_user

    return role_checker


# Admins can do anything a coach can.
require_coach = require_role(["coach", "admin"])


def is_admin(user: Coach) -> bool:
    return user.role == "admin"


def get_owned_customer(db: Session, user: Coach, customer_id: UUID) -> Customer:
    customer = db.query(Customer).filter(Customer.id == customer_id).first()
    if customer is None:
        raise NotFoundError("Customer", str(customer_id))
    if not is_admin(user) and customer.coach_id != user.id:
        raise ForbiddenError()
    return customer


def get_owned_invite(db: Session, user: Coach, invite_id: UUID) -> Invite:
    invite = db.query(Invite).filter(Invite.id == invite_id).first()
    if invite is None:
        raise NotFoundError("Invite", str(invite_id))
    if not is_admin(user) and invite.coach_id != user.id:
        raise ForbiddenError()
    return invite
