"""Password hashing and database URL helpers."""

from __future__ import annotations

import pytest

from taskflow.server.db.engine import normalize_url
from taskflow.server.security import hash_password, verify_password


async def test_hash_and_verify():
    hashed = await hash_password("secret123")
    assert hashed != "secret123"
    assert await verify_password("secret123", hashed)
    assert not await verify_password("wrong", hashed)


@pytest.mark.parametrize(
    "url",
    [
        "postgres://u:p@db/taskflow",
        "postgresql://u:p@db/taskflow",
        "postgresql+asyncpg://u:p@db/taskflow",
        "postgresql+psycopg://u:p@db/taskflow",
    ],
)
def test_normalize_url(url: str):
    assert normalize_url(url) == "postgresql+psycopg://u:p@db/taskflow"
