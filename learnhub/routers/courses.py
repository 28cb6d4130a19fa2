from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from learnhub.db import get_db
from learnhub.route_logging import EndpointNameRoute
from learnhub.routers.deps import envelope
from learnhub.services.course_lookup_service import default_course_lookup, serialize_course_hit


router = APIRouter(prefix='/api/v1/courses', tags=['Courses'], route_class=EndpointNameRoute)


@router.get('/{course_id}/lookup')
def lookup_course(course_id: str, db: Session = Depends(get_db)):
    hit = default_course_lookup.require(db, course_id)
    return envelope(serialize_course_hit(hit))
