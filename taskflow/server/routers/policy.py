"""Serve the authorization table so clients gate their UI from it."""

from __future__ import annotations

from fastapi import APIRouter

from taskflow.server import policy
from taskflow.server.models.api import PolicyRule

router = APIRouter(prefix="/policy", tags=["policy"])


@router.get("", response_model=list[PolicyRule])
async def get_policy() -> list[dict[str, str]]:
    """Every ``(role, resource, action) -> grant`` rule.  Unlisted combinations are ``none``."""
    return policy.rules()
