from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from learnhub.db import get_db
from learnhub.route_logging import EndpointNameRoute
from learnhub.routers.deps import envelope, require_admin
from learnhub.services import side_effect_service
from learnhub.services.auth_service import Principal


router = APIRouter(prefix='/api/v1/tasks', tags=['Side-effect tasks'], route_class=EndpointNameRoute)


@router.get('')
def list_tasks(
    status: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    rows = side_effect_service.list_tasks(db, status=status, limit=limit)
    return envelope([side_effect_service.serialize_task(row) for row in rows])


@router.post('/run')
def run_tasks(
    limit: int | None = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    return envelope(side_effect_service.run_due_tasks(db, limit=limit))


@router.post('/{task_id}/retry')
def retry_task(task_id: int, db: Session = Depends(get_db), _: Principal = Depends(require_admin)):
    task = side_effect_service.retry_task(db, task_id)
    return envelope(side_effect_service.serialize_task(task), 'Task re-queued')
