# backend/amexing/api/auth.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.logging import AuditEvent, audit_log
from ..core.security import (
    create_access_token,
    hash_password,
    password_policy_errors,
    verify_password,
)
from ..models import User
from ..services.rbac import authorize, user_permissions
from .deps import CurrentUser, context_from_request, get_current_user, get_db

router = APIRouter(prefix="/auth", tags=["auth"])


# ---------- Schemas ----------

class LoginIn(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email or username")
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    must_change_password: bool = False


class MeOut(BaseModel):
    id: int
    username: str
    email: EmailStr
    full_name: str
    role: Optional[str] = None
    role_level: Optional[int] = None
    client_id: Optional[int] = None
    department_id: Optional[int] = None
    organization_id: str
    must_change_password: bool
    last_login_at: Optional[datetime] = None
    permissions: Dict[str, List[str]]


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str


class OAuthAccountIn(BaseModel):
    provider: str = Field(..., min_length=1)
    provider_id: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None


# ---------- Endpoints ----------

@router.post("/login", response_model=TokenOut)
def login(body: LoginIn, request: Request, db: Session = Depends(get_db)):
    """
    Email or username + password. Repeated failures lock the account for
    ACCOUNT_LOCKOUT_DURATION_MINUTES.
    """
    ident = body.identifier.strip().lower()
    ip = request.client.host if request.client else None
    user = (
        User.query_existing(db)
        .filter(or_(func.lower(User.email) == ident, func.lower(User.username) == ident))
        .first()
    )
    if not user:
        audit_log(AuditEvent.LOGIN_FAILED, f"Unknown account '{ident}'", ip_address=ip, level="WARNING")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if user.is_locked():
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail=f"Account locked until {user.locked_until.isoformat()}",
        )

    if not verify_password(body.password, user.password_hash):
        locked = user.register_failed_login(
            settings.MAX_LOGIN_ATTEMPTS, settings.ACCOUNT_LOCKOUT_DURATION_MINUTES
        )
        db.add(user)
        db.commit()
        if locked:
            audit_log(AuditEvent.ACCOUNT_LOCKED, "Too many failed logins", user=user.username, ip_address=ip, level="WARNING")
            raise HTTPException(status_code=status.HTTP_423_LOCKED, detail="Account locked after too many failed attempts")
        audit_log(AuditEvent.LOGIN_FAILED, "Wrong password", user=user.username, ip_address=ip, level="WARNING")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.is_active():
        raise HTTPException(status_code=403, detail="User is inactive")

    user.register_successful_login("password")
    db.add(user)
    db.commit()
    audit_log(AuditEvent.LOGIN_SUCCESS, "Password login", user=user.username, ip_address=ip)

    token = create_access_token(subject=str(user.id), role_name=user.role_name)
    return TokenOut(access_token=token, must_change_password=bool(user.must_change_password))


@router.get("/me", response_model=MeOut)
def me(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """Current user plus effective permissions (role and delegated)."""
    u = current.user
    return MeOut(
        id=u.id,
        username=u.username,
        email=u.email,
        full_name=u.full_name,
        role=u.role_name,
        role_level=u.role.level if u.role else None,
        client_id=u.client_id,
        department_id=u.department_id,
        organization_id=u.organization_id,
        must_change_password=bool(u.must_change_password),
        last_login_at=u.last_login_at,
        permissions=user_permissions(db, u),
    )


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    body: PasswordChangeIn,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    u = current.user
    if not verify_password(body.current_password, u.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    if body.current_password == body.new_password:
        raise HTTPException(status_code=400, detail="New password must differ from the current one")
    errors = password_policy_errors(body.new_password)
    if errors:
        raise HTTPException(status_code=400, detail="Password validation failed: " + ", ".join(errors))

    u.password_hash = hash_password(body.new_password)
    u.password_changed_at = datetime.utcnow()
    u.must_change_password = False
    db.add(u)
    db.commit()
    audit_log(AuditEvent.PASSWORD_CHANGED, "Password changed", user=u.username)
    return None


@router.get("/check")
def check_permission(
    request: Request,
    permission: str = Query(..., description="resource.action"),
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Evaluate a permission for the caller with the request context (amount, department_id, client_id)."""
    result = authorize(db, current.user, permission, context_from_request(request, current))
    if result.source == "delegation":
        db.commit()
    return {
        "permission": permission,
        "allowed": result.allowed,
        "source": result.source,
        "reason": result.reason,
        "delegation_id": result.delegation_id,
    }


# ---------- OAuth account bookkeeping ----------

@router.get("/oauth-accounts")
def list_oauth_accounts(current: CurrentUser = Depends(get_current_user)):
    u = current.user
    return {"primary": u.primary_oauth_provider, "items": u.oauth_accounts or []}


@router.post("/oauth-accounts", status_code=status.HTTP_201_CREATED)
def link_oauth_account(
    body: OAuthAccountIn,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    u = current.user
    account = u.add_oauth_account(body.provider, body.provider_id, email=body.email)
    db.add(u)
    db.commit()
    return {"primary": u.primary_oauth_provider, "account": account}


@router.delete("/oauth-accounts/{provider}", status_code=status.HTTP_204_NO_CONTENT)
def unlink_oauth_account(
    provider: str,
    current: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    u = current.user
    if not u.get_oauth_account(provider):
        raise HTTPException(status_code=404, detail="OAuth account not linked")
    if not u.password_hash and len(u.oauth_accounts or []) == 1:
        raise HTTPException(status_code=400, detail="Cannot unlink the only sign-in method")
    u.remove_oauth_account(provider)
    db.add(u)
    db.commit()
    return None
