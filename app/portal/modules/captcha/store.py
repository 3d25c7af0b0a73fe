from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime

from flask import Flask
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.portal.modules.captcha.models import CaptchaChallenge


class CaptchaStoreError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredChallenge:
    answer: int
    attempts: int
    expires_at: datetime


class CaptchaStore:
    """
    Expiring key/value store for challenges. Implementations must be safe to share
    between worker processes when used in production.
    """

    def put(self, captcha_id: str, answer: int, expires_at: datetime) -> None:
        raise NotImplementedError

    def get(self, captcha_id: str) -> StoredChallenge | None:
        raise NotImplementedError

    def increment_attempts(self, captcha_id: str) -> int:
        raise NotImplementedError

    def delete(self, captcha_id: str) -> None:
        raise NotImplementedError

    def purge_expired(self, now: datetime | None = None) -> int:
        raise NotImplementedError

    def count_active(self, now: datetime | None = None) -> int:
        raise NotImplementedError


@dataclass(frozen=True)
class DatabaseCaptchaStore(CaptchaStore):
    """Backed by the captcha_challenges table; every call runs in its own short transaction."""

    session_factory: sessionmaker[Session]

    def _session(self) -> Session:
        return self.session_factory()

    def put(self, captcha_id: str, answer: int, expires_at: datetime) -> None:
        with self._session() as s, s.begin():
            s.add(CaptchaChallenge(id=captcha_id, answer=answer, attempts=0, expires_at=expires_at))

    def get(self, captcha_id: str) -> StoredChallenge | None:
        with self._session() as s:
            row = s.get(CaptchaChallenge, captcha_id)
            if row is None:
                return None
            return StoredChallenge(answer=row.answer, attempts=row.attempts, expires_at=row.expires_at)

    def increment_attempts(self, captcha_id: str) -> int:
        with self._session() as s, s.begin():
            s.execute(
                update(CaptchaChallenge)
                .where(CaptchaChallenge.id == captcha_id)
                .values(attempts=CaptchaChallenge.attempts + 1)
            )
            attempts = s.scalar(select(CaptchaChallenge.attempts).where(CaptchaChallenge.id == captcha_id))
        if attempts is None:
            raise CaptchaStoreError(f"captcha {captcha_id} vanished")
        return attempts

    def delete(self, captcha_id: str) -> None:
        with self._session() as s, s.begin():
            s.execute(delete(CaptchaChallenge).where(CaptchaChallenge.id == captcha_id))

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        with self._session() as s, s.begin():
            result = s.execute(delete(CaptchaChallenge).where(CaptchaChallenge.expires_at < now))
            return result.rowcount or 0

    def count_active(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        with self._session() as s:
            return s.scalar(select(func.count(CaptchaChallenge.id)).where(CaptchaChallenge.expires_at >= now)) or 0


@dataclass
class MemoryCaptchaStore(CaptchaStore):
    """Single-process store for local development."""

    _items: dict[str, StoredChallenge] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def put(self, captcha_id: str, answer: int, expires_at: datetime) -> None:
        with self._lock:
            self._items[captcha_id] = StoredChallenge(answer=answer, attempts=0, expires_at=expires_at)

    def get(self, captcha_id: str) -> StoredChallenge | None:
        with self._lock:
            return self._items.get(captcha_id)

    def increment_attempts(self, captcha_id: str) -> int:
        with self._lock:
            item = self._items.get(captcha_id)
            if item is None:
                raise CaptchaStoreError(f"captcha {captcha_id} vanished")
            item = StoredChallenge(answer=item.answer, attempts=item.attempts + 1, expires_at=item.expires_at)
            self._items[captcha_id] = item
            return item.attempts

    def delete(self, captcha_id: str) -> None:
        with self._lock:
            self._items.pop(captcha_id, None)

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        with self._lock:
            dead = [k for k, v in self._items.items() if v.expires_at < now]
            for k in dead:
                del self._items[k]
            return len(dead)

    def count_active(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        with self._lock:
            return sum(1 for v in self._items.values() if v.expires_at >= now)


def captcha_store_from_config(app: Flask) -> CaptchaStore:
    backend = app.config.get("CAPTCHA_BACKEND", "database")
    if backend == "memory":
        return MemoryCaptchaStore()
    return DatabaseCaptchaStore(session_factory=app.extensions["sqlalchemy_sessionmaker"])
