"""Request ID helper for endpoints.

Relies on the request id middleware binding the id into the logging
context. Falls back to a default when nothing is bound.
"""

from __future__ import annotations

from typing import Optional

from classroom.obs import logging as obs_logging

REQUEST_ID_ATTR = "request_id"


def get_request_id(default: str = "unknown") -> str:
    """Return the current request id if bound, else a default."""
    rid: Optional[str] = obs_logging._REQUEST_ID.get()
    return rid or default
