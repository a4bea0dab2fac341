# backend/amexing/api/deps.py
from datetime import datetime
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..core.config import SessionLocal
from ..core.logging import AuditEvent, audit_log
from ..core.security import decode_token
from ..models import User
from ..models.conditions import PermissionContext
from ..services.rbac import authorize

# single Bearer field for Swagger "Authorize"
auth_scheme = HTTPBearer(auto_error=True)

# ---------------------------
# DB Session Dependency
# ---------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# ---------------------------
# Current User DTO
# ---------------------------
class CurrentUser:
    def __init__(self, user: User):
        self.user = user
        self.id = user.id
        self.email = user.email
        self.username = user.username
        self.role_name = user.role_name or ""
        self.client_id = user.client_id
        self.department_id = user.department_id
        self.organization_id = user.organization_id

# ---------------------------
# AuthN: Token → CurrentUser
# ---------------------------
def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    token = credentials.credentials
    try:
        payload = decode_token(token)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id: Optional[str] = payload.get("sub")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active() or user.is_locked():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is not active",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(user)

# ---------------------------
# AuthZ: Permission Check
# ---------------------------
def _int_param(request: Request, *names: str) -> Optional[int]:
    for name in names:
        raw = request.path_params.get(name) or request.query_params.get(name)
        if raw is not None and str(raw).isdigit():
            return int(raw)
    return None


def context_from_request(request: Request, current: CurrentUser) -> PermissionContext:
    """
    Build the evaluation context for a request.

    Target department / organization come from ``department_id`` and
    ``client_id`` path or query parameters; ``amount`` from the query string.
    """
    client_id = _int_param(request, "client_id")
    amount = request.query_params.get("amount")
    try:
        amount_value = float(amount) if amount is not None else None
    except ValueError:
        amount_value = None

    return PermissionContext(
        amount=amount_value,
        department_id=_int_param(request, "department_id"),
        user_department_id=current.department_id,
        organization_id=str(client_id) if client_id is not None else None,
        user_organization_id=current.organization_id,
        timestamp=datetime.utcnow(),
        ip_address=request.client.host if request.client else None,
    )


def require_permission(permission: str):
    """
    Usage:
      dependencies=[Depends(require_permission("clients.read"))]
    or, when the handler needs the caller:
      current: CurrentUser = Depends(require_permission("clients.update"))
    """

    def checker(
        request: Request,
        current: CurrentUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> CurrentUser:
        context = context_from_request(request, current)
        result = authorize(db, current.user, permission, context)
        if result.allowed:
            if result.source == "delegation":
                db.commit()  # persist usage counters
            return current

        audit_log(
            AuditEvent.PERMISSION_DENIED,
            f"{permission}: {result.reason}",
            user=current.username,
            ip_address=context.ip_address,
            level="WARNING",
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Permission denied: {result.reason}")

    return checker
