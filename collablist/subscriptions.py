"""Push subscription store: one row per (user, endpoint), upserted."""

from __future__ import annotations

from typing import Iterable, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db_models import PushSubscriptionDB


def upsert_subscription(db: Session, *, user_id: int, endpoint: str, p256dh: str, auth: str) -> PushSubscriptionDB:
    """Insert or refresh keys of the user's subscription for `endpoint`."""
    row = (
        db.query(PushSubscriptionDB)
        .filter(PushSubscriptionDB.user_id == user_id, PushSubscriptionDB.endpoint == endpoint)
        .one_or_none()
    )
    if row is None:
        row = PushSubscriptionDB(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same endpoint: update theirs
            db.rollback()
            row = (
                db.query(PushSubscriptionDB)
                .filter(PushSubscriptionDB.user_id == user_id, PushSubscriptionDB.endpoint == endpoint)
                .one()
            )
            row.p256dh, row.auth = p256dh, auth
            db.commit()
    else:
        row.p256dh, row.auth = p256dh, auth
        db.commit()
    db.refresh(row)
    return row


def subscriptions_for_users(db: Session, user_ids: Iterable[int]) -> List[PushSubscriptionDB]:
    ids = list(set(user_ids))
    if not ids:
        return []
    return (
        db.query(PushSubscriptionDB)
        .filter(PushSubscriptionDB.user_id.in_(ids))
        .order_by(PushSubscriptionDB.id)
        .all()
    )


def delete_subscription(db: Session, subscription_id: int) -> bool:
    deleted = db.query(PushSubscriptionDB).filter(PushSubscriptionDB.id == subscription_id).delete()
    db.commit()
    return bool(deleted)
