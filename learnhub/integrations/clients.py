from __future__ import annotations

import logging
from typing import Any

import httpx

from learnhub.config import settings
from learnhub.errors import DependencyError


logger = logging.getLogger(__name__)


def _timeout() -> float:
    return float(settings.external_timeout_seconds or 30.0)


class PdfRenderer:
    def render(self, html: str) -> bytes:
        raise NotImplementedError


class FileStorage:
    def upload(self, key: str, content: bytes, content_type: str) -> str:
        raise NotImplementedError


class EmailSender:
    def send(self, *, to: str, subject: str, body: str, attachments: list[dict[str, Any]] | None = None) -> bool:
        raise NotImplementedError


class HttpPdfRenderer(PdfRenderer):
    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip('/')

    def render(self, html: str) -> bytes:
        try:
            with httpx.Client(timeout=_timeout()) as client:
                response = client.post(f'{self.base_url}/render', json={'html': html})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DependencyError(f'PDF rendering failed: {exc}') from exc
        if not response.content:
            raise DependencyError('PDF rendering returned an empty document')
        return response.content


class HttpFileStorage(FileStorage):
    def __init__(self, base_url: str, public_base_url: str = '') -> None:
        self.base_url = base_url.rstrip('/')
        self.public_base_url = (public_base_url or base_url).rstrip('/')

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        try:
            with httpx.Client(timeout=_timeout()) as client:
                response = client.put(
                    f'{self.base_url}/{key.lstrip("/")}',
                    content=content,
                    headers={'Content-Type': content_type},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DependencyError(f'Upload failed for {key}: {exc}') from exc
        try:
            url = (response.json() or {}).get('url')
        except ValueError:
            url = None
        return url or f'{self.public_base_url}/{key.lstrip("/")}'


class HttpEmailSender(EmailSender):
    def __init__(self, base_url: str, sender: str) -> None:
        self.base_url = base_url.rstrip('/')
        self.sender = sender

    def send(self, *, to: str, subject: str, body: str, attachments: list[dict[str, Any]] | None = None) -> bool:
        payload = {
            'from': self.sender,
            'to': to,
            'subject': subject,
            'html': body,
            'attachments': attachments or [],
        }
        try:
            with httpx.Client(timeout=_timeout()) as client:
                response = client.post(f'{self.base_url}/send', json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DependencyError(f'Email delivery failed: {exc}') from exc
        return True


class LogOnlyPdfRenderer(PdfRenderer):
    """Used when no rendering service is configured; emits the HTML as bytes."""

    def render(self, html: str) -> bytes:
        logger.info('pdf_renderer_not_configured html_bytes=%s', len(html))
        return html.encode('utf-8')


class LogOnlyFileStorage(FileStorage):
    def upload(self, key: str, content: bytes, content_type: str) -> str:
        logger.info('file_storage_not_configured key=%s bytes=%s content_type=%s', key, len(content), content_type)
        return f'local://{key.lstrip("/")}'


class LogOnlyEmailSender(EmailSender):
    def send(self, *, to: str, subject: str, body: str, attachments: list[dict[str, Any]] | None = None) -> bool:
        logger.info('email_not_configured to=%s subject=%s attachments=%s', to, subject, len(attachments or []))
        return True
