# collablist/routers/subscriptions.py
# PURPOSE: register a browser push subscription and expose the VAPID public key.

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import subscriptions as subscription_store
from ..auth import get_current_user
from ..config import settings
from ..db import get_db
from ..db_models import UserDB
from ..models import SubscriptionIn, VapidOut

router = APIRouter(tags=["push"])


@router.post("/subscriptions", status_code=status.HTTP_201_CREATED)
def subscribe(body: SubscriptionIn, db: Session = Depends(get_db), user: UserDB = Depends(get_current_user)):
    """Upsert by (user, endpoint): re-subscribing the same browser refreshes its keys."""
    row = subscription_store.upsert_subscription(
        db, user_id=user.id, endpoint=body.endpoint, p256dh=body.keys.p256dh, auth=body.keys.auth
    )
    return {"message": "Subscribed", "id": row.id}


@router.get("/vapid", response_model=VapidOut)
def vapid_public_key():
    # Public half only; no auth needed to set up a subscription
    return VapidOut(public_key=settings.VAPID_PUBLIC_KEY)
