"""Credential pools for providers that rotate API keys on quota errors."""

import logging
import threading

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def mask_credential(credential: str) -> str:
    """Render a credential safely for logs."""
    if not credential:
        return "<none>"
    if len(credential) <= 8:
        return "****"
    return f"{credential[:3]}...{credential[-4:]}"


class CredentialPool:
    """
    Ordered, non-empty list of credentials with a forward-only cursor.

    The cursor advances modulo the pool size and is never reset, so
    rotations survive across requests sharing the pool.
    """

    def __init__(self, credentials: list[str] | tuple[str, ...]):
        cleaned = [c.strip() for c in credentials if c and c.strip()]
        if not cleaned:
            raise ConfigurationError("Credential pool needs at least one credential")
        self._credentials = tuple(cleaned)
        self._cursor = 0
        self._rotations = 0
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._credentials)

    @property
    def rotations(self) -> int:
        with self._lock:
            return self._rotations

    def current(self) -> str:
        with self._lock:
            return self._credentials[self._cursor]

    def rotate(self) -> str:
        """Advance to the next credential and return it."""
        with self._lock:
            self._cursor = (self._cursor + 1) % len(self._credentials)
            self._rotations += 1
            credential = self._credentials[self._cursor]
        logger.info(f"[RETRY] Rotated credential -> {mask_credential(credential)}")
        return credential

    def rotate_from(self, credential: str) -> str:
        """
        Rotate only if the pool still points at credential.

        Concurrent tasks that fail on the same key must not skip a key
        each; the second caller just picks up the already rotated one.
        """
        with self._lock:
            if self._credentials[self._cursor] == credential:
                self._cursor = (self._cursor + 1) % len(self._credentials)
                self._rotations += 1
                rotated = True
            else:
                rotated = False
            new_credential = self._credentials[self._cursor]
        if rotated:
            logger.info(f"[RETRY] Rotated credential -> {mask_credential(new_credential)}")
        return new_credential

    def __len__(self) -> int:
        return len(self._credentials)

    def __repr__(self) -> str:
        return f"CredentialPool(size={self.size}, active={mask_credential(self.current())})"
