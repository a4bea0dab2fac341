from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, constr, field_validator
from sqlalchemy.orm import Session

from ..models import EXPERIENCE_TYPES, MAX_INCLUDED_EXPERIENCES, Experience, ExperienceInclusion
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/experiences", tags=["experiences"])


# ---------- Schemas ----------
class ExperienceCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    description: constr(strip_whitespace=True, min_length=1, max_length=1000)
    type: str = "Experience"
    cost: float = Field(0, ge=0)
    main_image: Optional[str] = None
    experiences: List[int] = []

    @field_validator("type")
    @classmethod
    def _type(cls, v: str) -> str:
        if v not in EXPERIENCE_TYPES:
            raise ValueError(f"type must be one of {', '.join(EXPERIENCE_TYPES)}")
        return v


class ExperienceUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None
    description: Optional[constr(strip_whitespace=True, min_length=1, max_length=1000)] = None
    type: Optional[str] = None
    cost: Optional[float] = Field(None, ge=0)
    main_image: Optional[str] = None
    experiences: Optional[List[int]] = None

    @field_validator("type")
    @classmethod
    def _type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in EXPERIENCE_TYPES:
            raise ValueError(f"type must be one of {', '.join(EXPERIENCE_TYPES)}")
        return v


def serialize_experience(e: Experience) -> dict:
    return {
        "id": e.id,
        "name": e.name,
        "display_name": e.display_name,
        "description": e.description,
        "type": e.type,
        "cost": float(e.cost or 0),
        "main_image": e.main_image,
        "is_package": e.is_package(),
        "experiences": [{"id": x.id, "name": x.name} for x in e.included_experiences],
        "lifecycle_status": e.lifecycle_status,
    }


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = Experience.query_existing(db).filter(Experience.name == name)
    if exclude_id is not None:
        q = q.filter(Experience.id != exclude_id)
    return q.first() is not None


def _resolve_included(db: Session, ids: List[int], self_id: Optional[int] = None) -> List[Experience]:
    ids = list(dict.fromkeys(ids))
    if len(ids) > MAX_INCLUDED_EXPERIENCES:
        raise HTTPException(status_code=400, detail=f"A package can include at most {MAX_INCLUDED_EXPERIENCES} experiences")
    if self_id is not None and self_id in ids:
        raise HTTPException(status_code=400, detail="An experience cannot include itself")
    found = {e.id: e for e in Experience.query_existing(db).filter(Experience.id.in_(ids)).all()} if ids else {}
    missing = [i for i in ids if i not in found]
    if missing:
        raise HTTPException(status_code=400, detail=f"Experiences not found: {', '.join(map(str, missing))}")
    return [found[i] for i in ids]


# ---------- Endpoints ----------
@router.get("/", dependencies=[Depends(require_permission("experiences.read"))])
def list_experiences(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    q: Optional[str] = Query(None),
    experience_type: Optional[str] = Query(None, alias="type"),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(Experience, db, state)
    if q:
        qs = qs.filter(Experience.name.ilike(f"%{q}%"))
    if experience_type:
        qs = qs.filter(Experience.type == experience_type)
    return paginate(qs.order_by(Experience.name.asc()), page, size, serialize_experience)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_experience(
    body: ExperienceCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("experiences.create")),
):
    if _name_taken(db, body.name):
        raise HTTPException(status_code=409, detail="An experience with this name already exists")
    included = _resolve_included(db, body.experiences)
    exp = Experience(**body.model_dump(exclude={"experiences"}), created_by=current.id)
    exp.set_included(included)
    db.add(exp)
    commit_or_409(db)
    db.refresh(exp)
    return serialize_experience(exp)


@router.get("/{experience_id}", dependencies=[Depends(require_permission("experiences.read"))])
def get_experience(experience_id: int, db: Session = Depends(get_db)):
    return serialize_experience(get_or_404(Experience, db, experience_id, "Experience not found"))


@router.get("/{experience_id}/packages", dependencies=[Depends(require_permission("experiences.read"))])
def packages_containing(experience_id: int, db: Session = Depends(get_db)):
    """Live packages that include this experience."""
    get_or_404(Experience, db, experience_id, "Experience not found")
    packages = (
        Experience.query_active(db)
        .join(ExperienceInclusion, ExperienceInclusion.package_id == Experience.id)
        .filter(ExperienceInclusion.experience_id == experience_id)
        .order_by(Experience.name.asc())
        .all()
    )
    return [serialize_experience(p) for p in packages]


@router.patch("/{experience_id}")
def update_experience(
    experience_id: int,
    body: ExperienceUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("experiences.update")),
):
    exp = get_or_404(Experience, db, experience_id, "Experience not found")
    data = body.model_dump(exclude_unset=True)
    if data.get("name") and _name_taken(db, data["name"], exclude_id=exp.id):
        raise HTTPException(status_code=409, detail="An experience with this name already exists")
    included_ids = data.pop("experiences", None)
    if included_ids is not None:
        exp.set_included(_resolve_included(db, included_ids, self_id=exp.id))
    for k, v in data.items():
        setattr(exp, k, v)
    exp.modified_by = current.id
    commit_or_409(db)
    db.refresh(exp)
    return serialize_experience(exp)


@router.post("/{experience_id}/experiences/{included_id}")
def add_included(
    experience_id: int,
    included_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("experiences.update")),
):
    exp = get_or_404(Experience, db, experience_id, "Experience not found")
    if exp.includes_experience(included_id):
        raise HTTPException(status_code=409, detail="Experience is already included")
    included = _resolve_included(db, exp.included_ids + [included_id], self_id=exp.id)
    exp.set_included(included)
    exp.modified_by = current.id
    db.commit()
    db.refresh(exp)
    return serialize_experience(exp)


@router.delete("/{experience_id}/experiences/{included_id}")
def remove_included(
    experience_id: int,
    included_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("experiences.update")),
):
    exp = get_or_404(Experience, db, experience_id, "Experience not found")
    if not exp.includes_experience(included_id):
        raise HTTPException(status_code=404, detail="Experience is not included in this package")
    exp.set_included([e for e in exp.included_experiences if e.id != included_id])
    exp.modified_by = current.id
    db.commit()
    db.refresh(exp)
    return serialize_experience(exp)


@router.delete("/{experience_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_experience(
    experience_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("experiences.delete")),
):
    exp = get_or_404(Experience, db, experience_id, "Experience not found")
    apply_lifecycle(db, exp, "delete", current.id)
    return None


# must stay below the nested POST routes
@router.post("/{experience_id}/{action}", summary="activate | deactivate | restore")
def experience_lifecycle(
    experience_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("experiences.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    exp = get_or_404(Experience, db, experience_id, "Experience not found", include_deleted=True)
    if action == "restore" and _name_taken(db, exp.name, exclude_id=exp.id):
        raise HTTPException(status_code=409, detail="An experience with this name already exists")
    return serialize_experience(apply_lifecycle(db, exp, action, current.id))
