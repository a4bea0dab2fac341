from typing import Optional, List, Dict, Any
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..models import DelegatedPermission, User
from ..services import delegation as delegation_service
from ..services.rbac import has_permission
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/delegations", tags=["delegations"])


# ---------- Schemas ----------
class DelegationCreate(BaseModel):
    to_user_id: int
    permissions: List[str] = Field(..., min_length=1)
    delegation_type: str = "temporary"
    valid_until: Optional[datetime] = None
    conditions: Dict[str, Any] = {}
    restrictions: Dict[str, Any] = {}
    reason: Optional[str] = None
    priority: str = "normal"


class RevokeIn(BaseModel):
    reason: Optional[str] = None


class ExtendIn(BaseModel):
    valid_until: Optional[datetime] = None


class DelegationOut(BaseModel):
    id: int
    from_user_id: int
    to_user_id: int
    permissions: List[str]
    conditions: Dict[str, Any]
    restrictions: Dict[str, Any]
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_permanent: bool
    reason: Optional[str] = None
    delegation_type: str
    priority: str
    status: str
    usage_count: int
    last_used_at: Optional[datetime] = None
    revoked_by: Optional[int] = None
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    lifecycle_status: str

    class Config:
        from_attributes = True


def _can_manage(db: Session, current: CurrentUser, d: DelegatedPermission) -> bool:
    return d.from_user_id == current.id or has_permission(db, current.user, "delegations.manage")


def _load_visible(db: Session, current: CurrentUser, delegation_id: int) -> DelegatedPermission:
    d = delegation_service.get_delegation(db, delegation_id)
    if current.id not in (d.from_user_id, d.to_user_id) and not has_permission(db, current.user, "delegations.manage"):
        raise HTTPException(status_code=404, detail="Delegation not found")
    return d


# ---------- Endpoints ----------
@router.get("/", response_model=List[DelegationOut])
def list_delegations(
    direction: str = Query("received", description="received | given"),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("delegations.read")),
):
    if direction not in ("received", "given"):
        raise HTTPException(status_code=400, detail="direction must be 'received' or 'given'")
    return delegation_service.delegations_for(db, current.id, direction, include_inactive)


@router.post("/", response_model=DelegationOut, status_code=status.HTTP_201_CREATED)
def create_delegation(
    body: DelegationCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("delegations.create")),
):
    recipient = User.query_existing(db).filter(User.id == body.to_user_id).first()
    if not recipient:
        raise HTTPException(status_code=404, detail="Recipient not found")
    d = delegation_service.create_delegation(
        db,
        current.user,
        recipient,
        body.permissions,
        delegation_type=body.delegation_type,
        valid_until=body.valid_until,
        conditions=body.conditions,
        restrictions=body.restrictions,
        reason=body.reason,
        priority=body.priority,
    )
    db.commit()
    db.refresh(d)
    return d


@router.post("/cleanup", dependencies=[Depends(require_permission("delegations.manage"))])
def cleanup_expired(db: Session = Depends(get_db)):
    count = delegation_service.cleanup_expired(db)
    db.commit()
    return {"expired": count}


@router.get("/{delegation_id}", response_model=DelegationOut)
def get_delegation(
    delegation_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("delegations.read")),
):
    return _load_visible(db, current, delegation_id)


@router.post("/{delegation_id}/revoke", response_model=DelegationOut)
def revoke_delegation(
    delegation_id: int,
    body: RevokeIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("delegations.read")),
):
    d = _load_visible(db, current, delegation_id)
    if not _can_manage(db, current, d):
        raise HTTPException(status_code=403, detail="Only the delegator can revoke this delegation")
    delegation_service.revoke_delegation(db, d, current.user, body.reason)
    db.commit()
    db.refresh(d)
    return d


@router.post("/{delegation_id}/extend", response_model=DelegationOut)
def extend_delegation(
    delegation_id: int,
    body: ExtendIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("delegations.read")),
):
    d = _load_visible(db, current, delegation_id)
    if not _can_manage(db, current, d):
        raise HTTPException(status_code=403, detail="Only the delegator can extend this delegation")
    delegation_service.extend_delegation(db, d, body.valid_until, current.user)
    db.commit()
    db.refresh(d)
    return d
