"""Shared router dependencies."""
from fastapi import Header, Request

from ..core import MonitoringCore


def get_core(request: Request) -> MonitoringCore:
    return request.app.state.core


async def get_user_id(x_user_id: int = Header(...)) -> int:
    """Owner id, set by the authenticating proxy in front of this service."""
    return x_user_id
