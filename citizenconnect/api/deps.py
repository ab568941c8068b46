"""Request-scoped dependencies shared by the API routes."""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from citizenconnect.api.realtime import hub
from citizenconnect.database import get_db
from citizenconnect.models.domain import User
from citizenconnect.services.notifications import Publisher
from citizenconnect.services.policy import Actor


def get_current_actor(
    x_user_id: Optional[int] = Header(default=None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve the caller.

    Authentication happens at the gateway, which forwards the verified user
    id in X-User-Id. A missing or unknown id is treated as unauthenticated.
    """
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    user = db.query(User).filter(User.id == x_user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return Actor.from_user(user)


def get_publisher() -> Publisher:
    return hub
