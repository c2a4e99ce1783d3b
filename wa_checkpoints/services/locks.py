import asyncio
import uuid
from contextlib import asynccontextmanager

import redis.asyncio as redis
from wa_checkpoints.core.config import settings

r = redis.from_url(settings.REDIS_URL, decode_responses=True)

class PhoneLockTimeout(Exception):
    def __init__(self, phone: str):
        super().__init__(f"Timed out waiting for the lock on {phone}")
        self.phone = phone

def lock_key(phone: str) -> str:
    return f"phone_lock:{phone}"

async def acquire_lock(phone: str, token: str, ttl_seconds: int = 60) -> bool:
    return await r.set(lock_key(phone), token, nx=True, ex=ttl_seconds) is True

async def get_lock_owner(phone: str) -> str | None:
    return await r.get(lock_key(phone))

async def release_lock(phone: str, token: str) -> bool:
    k = lock_key(phone)
    current = await r.get(k)
    if current != token:
        return False
    await r.delete(k)
    return True

@asynccontextmanager
async def phone_lock(phone: str, ttl_seconds: int | None = None, wait_seconds: float | None = None):
    """Serialize state changes for one normalized phone number across handlers."""
    ttl = ttl_seconds or settings.PHONE_LOCK_TTL_SECONDS
    wait = settings.PHONE_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds
    token = uuid.uuid4().hex
    loop = asyncio.get_running_loop()
    deadline = loop.time() + wait
    while not await acquire_lock(phone, token, ttl):
        if loop.time() >= deadline:
            raise PhoneLockTimeout(phone)
        await asyncio.sleep(0.05)
    try:
        yield token
    finally:
        await release_lock(phone, token)
