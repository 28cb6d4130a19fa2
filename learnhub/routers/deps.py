from fastapi import Depends, Header

from learnhub.errors import AuthenticationError, ForbiddenError
from learnhub.services.auth_service import Principal, validate_session_token


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def require_principal(authorization: str | None = Header(default=None)) -> Principal:
    principal = validate_session_token(_bearer_token(authorization))
    if principal is None:
        raise AuthenticationError('Authentication required')
    return principal


def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    if not principal.is_admin:
        raise ForbiddenError('Admin access required')
    return principal


def acting_student_id(principal: Principal, requested: int | None = None) -> int:
    """Students act on themselves; admins may act on behalf of any student."""
    if requested is None or requested == principal.user_id:
        return principal.user_id
    if not principal.is_admin:
        raise ForbiddenError('Cannot act on behalf of another student')
    return int(requested)


def owner_scope(principal: Principal) -> int | None:
    return None if principal.is_admin else principal.user_id


def envelope(data=None, message: str = 'OK') -> dict:
    return {'success': True, 'message': message, 'data': data}
