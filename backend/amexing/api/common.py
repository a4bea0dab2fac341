# backend/amexing/api/common.py
"""Helpers shared by the CRUD routers: lifecycle filters, paging, commits."""

from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

LIFECYCLE_FILTERS = ("active", "archived", "deleted", "existing", "all")


def lifecycle_query(model, db: Session, state: Optional[str] = "active"):
    """state: active | archived | deleted | existing (active+archived) | all"""
    if state == "archived":
        return model.query_archived(db)
    if state == "deleted":
        return model.query_soft_deleted(db)
    if state == "existing":
        return model.query_existing(db)
    if state == "all":
        return model.query_all(db)
    return model.query_active(db)


def paginate(qs, page: int, size: int, serialize: Callable[[Any], Any]) -> Dict[str, Any]:
    total = qs.count()
    rows = qs.offset((page - 1) * size).limit(size).all()
    meta = {
        "total": total,
        "page": page,
        "size": size,
        "pages": max(1, (total + size - 1) // size),
    }
    return {"meta": meta, "items": [serialize(r) for r in rows]}


def get_or_404(model, db: Session, obj_id: int, detail: str, include_deleted: bool = False):
    q = model.query_all(db) if include_deleted else model.query_existing(db)
    obj = q.filter(model.id == obj_id).first()
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return obj


def commit_or_409(db: Session, detail: str = "Conflict: duplicate record") -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


def apply_lifecycle(db: Session, obj, action: str, actor_id: int):
    """activate | deactivate | delete | restore, then commit."""
    if action == "activate":
        if obj.is_soft_deleted():
            raise HTTPException(status_code=400, detail="Restore the record before activating it")
        obj.activate(actor_id)
    elif action == "deactivate":
        obj.deactivate(actor_id)
    elif action == "delete":
        obj.soft_delete(actor_id)
    elif action == "restore":
        if not obj.is_soft_deleted():
            raise HTTPException(status_code=400, detail="Record is not deleted")
        obj.restore(actor_id)
    else:
        raise HTTPException(status_code=400, detail=f"Unknown lifecycle action '{action}'")
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
