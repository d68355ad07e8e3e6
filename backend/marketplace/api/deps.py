"""
Shared route dependencies

Authentication happens upstream; the gateway forwards the caller's id in
X-User-Id. X-Request-Id is honored when present so log lines can be
correlated across services.
"""
from typing import Optional

from fastapi import Header

from marketplace.core.logging import new_request_id


def get_request_id(x_request_id: Optional[str] = Header(None)) -> str:
    return x_request_id or new_request_id()


def get_user_id(x_user_id: str = Header(..., description="Id of the authenticated user")) -> str:
    return x_user_id
