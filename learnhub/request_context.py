from __future__ import annotations

from contextvars import ContextVar


# Label of the endpoint serving the current request; jobs run as 'background'.
current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')
