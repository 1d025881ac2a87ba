from __future__ import annotations

from contextvars import ContextVar


# Labels attached to slow-query logs; jobs run outside any request.
current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')
current_business: ContextVar[str] = ContextVar('current_business', default='-')
