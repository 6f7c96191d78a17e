"""SMS subscriber cleanup: drop numbers that never finished verification."""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from restaurant_ops.models.db import PhoneNumber
from restaurant_ops.utils import get_logger
from restaurant_ops.utils.time import utc_now

logger = get_logger(__name__)


def remove_unverified_phone_numbers(session: Session, *, max_age: timedelta, now: datetime | None = None) -> int:
    """Delete unverified phone numbers created before ``now - max_age``."""
    now = now or utc_now()
    cutoff = now - max_age
    try:
        removed = (
            session.query(PhoneNumber)
            .filter(PhoneNumber.verified == False, PhoneNumber.created_at < cutoff)  # noqa: E712
            .delete(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Removed unverified phone numbers", removed=removed, cutoff=cutoff.isoformat())
    return int(removed or 0)


__all__ = ["remove_unverified_phone_numbers"]
