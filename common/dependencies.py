"""Reusable FastAPI dependencies for auth, organization access and notifications."""
from typing import Callable, Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .database import get_db
from .models import Membership, MembershipRole, Organization, RoleEnum, User
from .notifications import Notifier, get_publisher

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")

ORG_MANAGER_ROLES = {MembershipRole.CREATOR, MembershipRole.ADMIN}


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def get_organization_or_404(db: Session, organization_id: int) -> Organization:
    organization = db.get(Organization, organization_id)
    if organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return organization


def ensure_org_role(
    db: Session,
    user: User,
    organization_id: int,
    roles: Iterable[MembershipRole] = ORG_MANAGER_ROLES,
) -> None:
    """Raise 403 unless ``user`` holds one of ``roles`` in the organization. Site admins always pass."""

    if user.role == RoleEnum.ADMIN:
        return
    membership = (
        db.query(Membership)
        .filter(
            Membership.organization_id == organization_id,
            Membership.user_id == user.id,
            Membership.role.in_(list(roles)),
        )
        .first()
    )
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not an administrator of this organization")


def get_notifier() -> Notifier:
    """Publisher used to flush buffered notifications; overridden in tests."""

    return get_publisher()
