from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from learnhub.config import settings
from learnhub.db import Base, engine
from learnhub.error_handlers import register_exception_handlers
from learnhub.routers import courses, emi, enrollments, payments, saved_courses, tasks
from learnhub.route_logging import EndpointNameRoute
from learnhub.scheduler import shutdown_scheduler, start_scheduler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
register_exception_handlers(app)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('learnhub.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


# saved_courses before enrollments: /saved must not match /{enrollment_id}.
app.include_router(saved_courses.router)
app.include_router(emi.router)
app.include_router(payments.router)
app.include_router(enrollments.router)
app.include_router(courses.router)
app.include_router(tasks.router)


@app.get('/')
def health():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
