from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

from learnhub.config import settings
from learnhub.core.time_provider import TimeProvider, default_time_provider
from learnhub.models import Role


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: int
    roles: tuple[str, ...]

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN.value in self.roles


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _sign(signing_input: bytes) -> bytes:
    return hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()


def create_session_token(user_id: int, roles: list[str] | tuple[str, ...], *, time_provider: TimeProvider = default_time_provider) -> str:
    header = {'alg': 'HS256', 'typ': 'JWT'}
    payload = {'sub': int(user_id), 'roles': list(roles), 'iat': int(time_provider.now().timestamp())}
    header_part = _b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signature_part = _b64url_encode(_sign(f'{header_part}.{payload_part}'.encode('ascii')))
    return f'{header_part}.{payload_part}.{signature_part}'


def validate_session_token(token: str | None) -> Principal | None:
    if not token:
        return None
    try:
        header_part, payload_part, signature_part = token.split('.')
        provided_signature = _b64url_decode(signature_part)
    except ValueError:
        return None

    if not hmac.compare_digest(provided_signature, _sign(f'{header_part}.{payload_part}'.encode('ascii'))):
        logger.info('session_token_rejected reason=signature')
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or payload.get('sub') is None:
        return None

    roles = payload.get('roles') or []
    if isinstance(roles, str):
        roles = [roles]
    return Principal(user_id=int(payload['sub']), roles=tuple(str(role).lower() for role in roles))
