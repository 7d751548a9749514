import logging

from sqlalchemy.orm import Session

from models import User, utcnow

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "bio", "age", "gender", "profile_image")


def get_or_create_profile(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        user = User(id=user_id)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Created default profile for %s", user_id)
    return user


def update_profile(db: Session, user_id: str, updates: dict) -> User:
    user = get_or_create_profile(db, user_id)
    for key in PROFILE_FIELDS:
        if key in updates:
            setattr(user, key, updates[key])
    user.updated_at = utcnow()
    db.commit()
    db.refresh(user)
    return user
