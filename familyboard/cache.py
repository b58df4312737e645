import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import delete
from sqlmodel import Session

from .models import AnalysisCacheEntry

logger = logging.getLogger(__name__)


def analysis_key(parent_id: int, child_id: int) -> str:
    return f"analysis:{parent_id}:{child_id}"


class AnalysisCache:
    """Expiring JSON values keyed by string, stored in the database.

    ``get`` also hands back stale values so a caller can show them while a
    fresh one is produced; corrupt rows are dropped on read.
    """

    def __init__(self, session: Session, clock: Optional[Callable[[], datetime]] = None):
        self.session = session
        self.clock = clock or datetime.utcnow

    def get(self, key: str) -> tuple[Optional[Any], bool]:
        entry = self.session.get(AnalysisCacheEntry, key)
        if not entry:
            return None, False
        try:
            value = json.loads(entry.value)
        except ValueError:
            logger.warning("Dropping corrupt cache entry %s", key)
            self.session.delete(entry)
            self.session.commit()
            return None, False
        return value, entry.expires_at > self.clock()

    def put(self, key: str, value: Any, ttl: timedelta) -> None:
        now = self.clock()
        entry = self.session.get(AnalysisCacheEntry, key)
        if entry:
            entry.value = json.dumps(value)
            entry.created_at = now
            entry.expires_at = now + ttl
        else:
            entry = AnalysisCacheEntry(
                key=key, value=json.dumps(value), created_at=now, expires_at=now + ttl
            )
        self.session.add(entry)
        self.session.commit()

    def sweep_expired(self) -> int:
        result = self.session.exec(
            delete(AnalysisCacheEntry).where(AnalysisCacheEntry.expires_at <= self.clock())
        )
        self.session.commit()
        if result.rowcount:
            logger.info("Removed %s expired cache entries", result.rowcount)
        return result.rowcount
