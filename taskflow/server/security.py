"""Password hashing.

bcrypt is CPU-bound; hashing and verification run in a worker thread.
"""

from __future__ import annotations

from anyio import to_thread
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


async def hash_password(password: str) -> str:
    return await to_thread.run_sync(pwd_context.hash, password)


async def verify_password(password: str, hashed: str) -> bool:
    return await to_thread.run_sync(pwd_context.verify, password, hashed)
