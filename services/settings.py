from pydantic import ValidationError
from sqlalchemy.orm import Session

from errors import InvalidInput
from schemas import AppSettings
from services.profile import get_or_create_profile

GROUPS = ("notifications", "reading", "privacy", "general")


def default_settings() -> dict:
    return AppSettings().model_dump()


def merge_settings(current: dict, updates: dict) -> dict:
    """Overlay `updates` on `current` one group at a time; unknown groups are ignored."""
    defaults = default_settings()
    merged = {}
    for group in GROUPS:
        merged[group] = {**defaults[group], **(current or {}).get(group, {})}
        merged[group].update((updates or {}).get(group) or {})
    try:
        return AppSettings.model_validate(merged).model_dump()
    except ValidationError as e:
        raise InvalidInput(f"invalid settings: {e.errors()[0]['msg']}")


def get_settings(db: Session, user_id: str) -> dict:
    user = get_or_create_profile(db, user_id)
    return merge_settings(user.settings or {}, {})


def update_settings(db: Session, user_id: str, updates: dict) -> dict:
    user = get_or_create_profile(db, user_id)
    user.settings = merge_settings(user.settings or {}, updates)
    db.commit()
    return user.settings


def reset_settings(db: Session, user_id: str) -> dict:
    user = get_or_create_profile(db, user_id)
    user.settings = None
    db.commit()
    return default_settings()
