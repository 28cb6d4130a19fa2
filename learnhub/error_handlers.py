import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from learnhub.errors import LearnhubError


logger = logging.getLogger(__name__)


def _error_body(message: str, data=None) -> dict:
    return {'success': False, 'message': message, 'data': data}


async def learnhub_error_handler(request: Request, exc: LearnhubError):
    if exc.status_code >= 500:
        logger.error('request_failed path=%s status_code=%s error=%s', request.url.path, exc.status_code, exc.message)
    else:
        logger.info('request_rejected path=%s status_code=%s error=%s', request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.data))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {'field': '.'.join(str(part) for part in error.get('loc', ()) if part != 'body'), 'message': error.get('msg', '')}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content=_error_body('Validation failed', {'errors': errors}))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)), headers=getattr(exc, 'headers', None))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception('request_unhandled path=%s method=%s', request.url.path, request.method)
    return JSONResponse(status_code=500, content=_error_body('Internal server error'))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LearnhubError, learnhub_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
