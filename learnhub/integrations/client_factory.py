from __future__ import annotations

import logging
from functools import lru_cache

from learnhub.config import settings
from learnhub.integrations.clients import (
    EmailSender,
    FileStorage,
    HttpEmailSender,
    HttpFileStorage,
    HttpPdfRenderer,
    LogOnlyEmailSender,
    LogOnlyFileStorage,
    LogOnlyPdfRenderer,
    PdfRenderer,
)


logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_pdf_renderer() -> PdfRenderer:
    if settings.pdf_service_url:
        return HttpPdfRenderer(settings.pdf_service_url)
    logger.info('pdf_renderer_mode mode=log_only')
    return LogOnlyPdfRenderer()


@lru_cache(maxsize=1)
def get_file_storage() -> FileStorage:
    if settings.storage_service_url:
        return HttpFileStorage(settings.storage_service_url, settings.storage_public_base_url)
    logger.info('file_storage_mode mode=log_only')
    return LogOnlyFileStorage()


@lru_cache(maxsize=1)
def get_email_sender() -> EmailSender:
    if settings.email_service_url:
        return HttpEmailSender(settings.email_service_url, settings.email_sender)
    logger.info('email_sender_mode mode=log_only')
    return LogOnlyEmailSender()
