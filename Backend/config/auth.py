import asyncio
import hashlib
import json
import logging
import os
import re
import secrets
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import APIKeyHeader

from config.settings import settings
from routers.errors import to_http_error
from services.exceptions import CreditWorkflowError, PinError
from services.storage_service import RemoteStoreClient, get_remote_store

logger = logging.getLogger(__name__)

_PIN_PATTERN = re.compile(r"^\d{6}$")
_HASH_ITERATIONS = 200_000


def validate_pin_format(pin: Optional[str]) -> str:
    if not pin or not _PIN_PATTERN.match(pin):
        raise PinError("PIN must be exactly 6 numeric digits")
    return pin


def _hash_pin(pin: str, salt: bytes) -> str:
    return hashlib.pbkdf2_hmac("sha256", pin.encode(), salt, _HASH_ITERATIONS).hex()


class PinAuthService:
    """
    Director PIN gate.

    The remote store's CHECK_PIN is the authority whenever a store URL is
    configured. The local file only caches a salted hash of the last PIN
    that verified, and is seeded with the default PIN on first run.
    """

    def __init__(self, store: Optional[RemoteStoreClient], cache_path: str, default_pin: str):
        self.store = store
        self.cache_path = cache_path
        self.default_pin = validate_pin_format(default_pin)

    @property
    def remote_enabled(self) -> bool:
        return self.store is not None and bool(self.store.url)

    def init(self) -> None:
        """Seed the cache with the default PIN when no PIN has been stored yet"""
        if os.path.exists(self.cache_path):
            return
        self._store_local(self.default_pin)
        logger.info("🔐 Director PIN cache seeded with the default PIN")

    def _store_local(self, pin: str) -> None:
        salt = secrets.token_bytes(16)
        with open(self.cache_path, "w") as f:
            json.dump({"salt": salt.hex(), "hash": _hash_pin(pin, salt)}, f)

    def _matches_local(self, pin: str) -> bool:
        self.init()
        with open(self.cache_path) as f:
            cached = json.load(f)
        candidate = _hash_pin(pin, bytes.fromhex(cached["salt"]))
        return secrets.compare_digest(candidate, cached["hash"])

    async def verify(self, pin: Optional[str]) -> None:
        """Raise PinError unless ``pin`` is the current director PIN"""
        pin = validate_pin_format(pin)

        if self.remote_enabled:
            if not await self.store.check_pin(pin):
                raise PinError("Incorrect PIN")
            # Cache only a PIN the store accepted that differs from the cached one
            if not await asyncio.to_thread(self._matches_local, pin):
                await asyncio.to_thread(self._store_local, pin)
            return

        if not await asyncio.to_thread(self._matches_local, pin):
            raise PinError("Incorrect PIN")

    async def rotate(self, current_pin: Optional[str], new_pin: Optional[str]) -> None:
        await self.verify(current_pin)
        new_pin = validate_pin_format(new_pin)
        if self.remote_enabled:
            await self.store.update_pin(current_pin, new_pin)
        await asyncio.to_thread(self._store_local, new_pin)
        logger.info("🔐 Director PIN rotated")


@lru_cache()
def get_pin_service() -> PinAuthService:
    service = PinAuthService(get_remote_store(), settings.PIN_CACHE_PATH, settings.DEFAULT_DIRECTOR_PIN)
    service.init()
    return service


director_pin_header = APIKeyHeader(name="X-Director-Pin", auto_error=False)


async def require_director_pin(
    pin: Optional[str] = Security(director_pin_header),
    pin_service: PinAuthService = Depends(get_pin_service),
) -> None:
    """FastAPI dependency guarding director-only endpoints"""
    if not pin:
        raise HTTPException(status_code=401, detail="Director PIN required")
    try:
        await pin_service.verify(pin)
    except CreditWorkflowError as e:
        raise to_http_error(e)
