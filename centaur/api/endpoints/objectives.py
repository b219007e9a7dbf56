"""
Objective and Task Endpoints

OKR-style planning inside a foundry: objectives with tasks under them.

RBAC:
- List/view: All authenticated users
- Create objective/task: Member role or higher
- Update: Members (any objective), viewers cannot
- Delete objective: Admin or objective owner
- Restore objective: Admin only
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from centaur.database import get_db
from centaur.middleware.foundry import FoundryContext
from centaur.models.user import User, UserRole
from centaur.models.objective import Objective, Task
from centaur.schemas.objective import (
    ObjectiveResponse,
    ObjectiveCreate,
    ObjectiveUpdate,
    ObjectiveListResponse,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)
from centaur.api.deps import get_current_user, get_current_foundry, require_member
from centaur.core.permissions import can_delete_objective, can_modify_objective
from centaur.core.exceptions import ObjectiveNotFoundError, TaskNotFoundError, UserNotFoundError
from centaur.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/objectives", tags=["objectives"])


def _load_objective(db: Session, foundry_id: str, objective_id: str) -> Objective:
    objective = db.query(Objective).filter(
        Objective.id == objective_id,
        Objective.foundry_id == foundry_id,  # CRITICAL: foundry isolation
        Objective.is_deleted == False  # noqa: E712
    ).first()
    if not objective:
        raise ObjectiveNotFoundError(objective_id)
    return objective


def _load_task(db: Session, objective: Objective, task_id: str) -> Task:
    task = db.query(Task).filter(
        Task.id == task_id,
        Task.objective_id == objective.id,
        Task.foundry_id == objective.foundry_id
    ).first()
    if not task:
        raise TaskNotFoundError(task_id)
    return task


def _check_assignee(db: Session, foundry_id: str, assignee_id: Optional[str]) -> None:
    """Assignees must belong to the same foundry."""
    if assignee_id is None:
        return
    exists = db.query(User.id).filter(
        User.id == assignee_id,
        User.foundry_id == foundry_id
    ).first()
    if not exists:
        raise UserNotFoundError(assignee_id)


@router.get("", response_model=ObjectiveListResponse)
async def list_objectives(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, pattern="^(active|completed|archived)$"),
    owner_id: Optional[str] = None,
    include_deleted: bool = False,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """
    List objectives in the current foundry.

    Soft-deleted objectives are only listed for admins who ask for them.
    """
    query = db.query(Objective).filter(Objective.foundry_id == foundry.id)

    if not (include_deleted and current_user.role == UserRole.ADMIN):
        query = query.filter(Objective.is_deleted == False)  # noqa: E712

    if status:
        query = query.filter(Objective.status == status)

    if owner_id:
        query = query.filter(Objective.owner_id == owner_id)

    total = query.count()
    offset = (page - 1) * page_size
    objectives = query.order_by(
        Objective.created_at.desc()
    ).offset(offset).limit(page_size).all()

    return ObjectiveListResponse(
        objectives=objectives,
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{objective_id}", response_model=ObjectiveResponse)
async def get_objective(
    objective_id: str,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    return _load_objective(db, foundry.id, objective_id)


@router.post("", response_model=ObjectiveResponse, status_code=status.HTTP_201_CREATED)
async def create_objective(
    objective_data: ObjectiveCreate,
    current_user: User = Depends(require_member),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """Current user becomes the objective owner."""
    objective = Objective(
        foundry_id=foundry.id,
        owner_id=current_user.id,
        title=objective_data.title,
        description=objective_data.description,
        status=objective_data.status,
        target_date=objective_data.target_date
    )

    db.add(objective)
    db.commit()
    db.refresh(objective)

    logger.info(f"Objective created: {objective.id} by {current_user.id}")

    return objective


@router.patch("/{objective_id}", response_model=ObjectiveResponse)
async def update_objective(
    objective_id: str,
    objective_data: ObjectiveUpdate,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    objective = _load_objective(db, foundry.id, objective_id)

    if not can_modify_objective(current_user, objective.owner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to modify this objective"
        )

    for field, value in objective_data.model_dump(exclude_unset=True).items():
        setattr(objective, field, value)

    db.commit()
    db.refresh(objective)

    logger.info(f"Objective updated: {objective.id} by {current_user.id}")

    return objective


@router.delete("/{objective_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_objective(
    objective_id: str,
    hard_delete: bool = Query(False, description="Permanently delete (admin only)"),
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """Soft delete by default. Hard delete removes the tasks too."""
    objective = db.query(Objective).filter(
        Objective.id == objective_id,
        Objective.foundry_id == foundry.id
    ).first()

    if not objective:
        raise ObjectiveNotFoundError(objective_id)

    if not can_delete_objective(current_user, objective.owner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to delete this objective"
        )

    if hard_delete:
        if current_user.role != UserRole.ADMIN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Hard delete requires admin privileges"
            )
        db.delete(objective)
        logger.info(f"Objective hard deleted: {objective_id} by {current_user.id}")
    else:
        objective.soft_delete()
        logger.info(f"Objective soft deleted: {objective_id} by {current_user.id}")

    db.commit()
    return None


@router.post("/{objective_id}/restore", response_model=ObjectiveResponse)
async def restore_objective(
    objective_id: str,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only admins can restore objectives"
        )

    objective = db.query(Objective).filter(
        Objective.id == objective_id,
        Objective.foundry_id == foundry.id,
        Objective.is_deleted == True  # noqa: E712
    ).first()

    if not objective:
        raise ObjectiveNotFoundError(objective_id)

    objective.is_deleted = False
    objective.deleted_at = None

    db.commit()
    db.refresh(objective)

    logger.info(f"Objective restored: {objective_id} by {current_user.id}")

    return objective


@router.get("/{objective_id}/tasks", response_model=list[TaskResponse])
async def list_tasks(
    objective_id: str,
    status: Optional[str] = Query(None, pattern="^(todo|in_progress|done|blocked)$"),
    assignee_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    objective = _load_objective(db, foundry.id, objective_id)

    query = db.query(Task).filter(
        Task.objective_id == objective.id,
        Task.foundry_id == foundry.id
    )
    if status:
        query = query.filter(Task.status == status)
    if assignee_id:
        query = query.filter(Task.assignee_id == assignee_id)

    return query.order_by(Task.created_at.asc()).all()


@router.post("/{objective_id}/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    objective_id: str,
    task_data: TaskCreate,
    current_user: User = Depends(require_member),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    objective = _load_objective(db, foundry.id, objective_id)
    _check_assignee(db, foundry.id, task_data.assignee_id)

    task = Task(
        foundry_id=foundry.id,
        objective_id=objective.id,
        assignee_id=task_data.assignee_id,
        title=task_data.title,
        description=task_data.description,
        status=task_data.status,
        due_date=task_data.due_date
    )

    db.add(task)
    db.commit()
    db.refresh(task)

    logger.info(f"Task created: {task.id} on objective {objective.id} by {current_user.id}")

    return task


@router.patch("/{objective_id}/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    objective_id: str,
    task_id: str,
    task_data: TaskUpdate,
    current_user: User = Depends(require_member),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    objective = _load_objective(db, foundry.id, objective_id)
    task = _load_task(db, objective, task_id)

    update_data = task_data.model_dump(exclude_unset=True)
    if "assignee_id" in update_data:
        _check_assignee(db, foundry.id, update_data["assignee_id"])

    for field, value in update_data.items():
        setattr(task, field, value)

    db.commit()
    db.refresh(task)

    logger.info(f"Task updated: {task.id} by {current_user.id}")

    return task


@router.delete("/{objective_id}/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    objective_id: str,
    task_id: str,
    current_user: User = Depends(get_current_user),
    foundry: FoundryContext = Depends(get_current_foundry),
    db: Session = Depends(get_db)
):
    """Same rule as the parent objective: admin or objective owner."""
    objective = _load_objective(db, foundry.id, objective_id)
    task = _load_task(db, objective, task_id)

    if not can_delete_objective(current_user, objective.owner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to delete this task"
        )

    db.delete(task)
    db.commit()

    logger.info(f"Task deleted: {task_id} by {current_user.id}")

    return None
