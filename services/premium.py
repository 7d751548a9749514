import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from errors import NotFound, PremiumRequired
from models import User, utcnow
from services.profile import get_or_create_profile

logger = logging.getLogger(__name__)

PREMIUM_FEATURES = {
    "premium_share_themes": {"name": "Premium Share Themes",
                             "description": "Access to 10 exclusive share card themes"},
    "advanced_analytics":   {"name": "Advanced Analytics",
                             "description": "Deep insights into your reading habits"},
    "unlimited_books":      {"name": "Unlimited Books",
                             "description": "Track as many books as you want"},
    "priority_support":     {"name": "Priority Support",
                             "description": "Get help faster with priority support"},
}

# id, name, description, type
SHARE_THEMES = [
    ("minimal-light",  "Minimal Light",            "Clean and simple light theme",          "free"),
    ("minimal-dark",   "Minimal Dark",             "Sleek dark theme",                      "free"),
    ("fancy-gradient", "Fancy Gradient Glow",      "Colorful gradient with glow effects",   "free"),
    ("tech-green",     "Tech Green / Code Hacker", "Technology green, neon, coder vibes",   "premium"),
    ("vintage",        "Vintage Paper",            "Old paper, sepia, classic",             "premium"),
    ("golden",         "Golden Prestige",          "Black and gold, luxurious",             "premium"),
    ("cyberpunk",      "Cyberpunk Neon",           "Neon purple/blue, futuristic",          "premium"),
    ("nature",         "Nature Calm Green",        "Light green, relaxing",                 "premium"),
    ("watercolor",     "Watercolor Pastel",        "Watercolor, soft, artistic",            "premium"),
    ("space",          "Space Galaxy",             "Universe, galaxy, cosmic",              "premium"),
    ("retro",          "Retro Pixel",              "8-bit pixel art",                       "premium"),
    ("anime",          "Anime/Manga",              "Manga/anime effects",                   "premium"),
    ("sunset",         "Sunset Mood",              "Yellow/pink sunset tones",              "premium"),
]


def is_premium(user: User, now: Optional[datetime] = None) -> bool:
    if not user.is_premium:
        return False
    expires = user.premium_expires_at
    return expires is None or expires > (now or utcnow())


def subscription_status(user: User, now: Optional[datetime] = None) -> dict:
    active = is_premium(user, now)
    return {
        "is_premium": active,
        "plan": user.plan if active else "free",
        "expires_at": user.premium_expires_at.isoformat() if user.premium_expires_at else None,
        "will_renew": bool(user.will_renew) and active,
    }


def sync_subscription(db: Session, user_id: str, premium: bool, plan: str = "free",
                      expires_at: Optional[datetime] = None, will_renew: bool = False) -> dict:
    user = get_or_create_profile(db, user_id)
    logger.info("Syncing premium status for %s: %s", user_id, premium)
    user.is_premium = premium
    user.plan = plan if premium else "free"
    user.premium_expires_at = expires_at
    user.will_renew = will_renew
    user.updated_at = utcnow()
    db.commit()
    return subscription_status(user)


def require_premium(user: User, feature: str):
    if not is_premium(user):
        name = PREMIUM_FEATURES.get(feature, {}).get("name", feature)
        raise PremiumRequired(
            f"{name} is only available for Premium members. Upgrade now to unlock this feature!"
        )


def list_features(user: User) -> list:
    unlocked = is_premium(user)
    return [{"id": fid, **meta, "unlocked": unlocked} for fid, meta in PREMIUM_FEATURES.items()]


def list_share_themes(user: User) -> list:
    unlocked = is_premium(user)
    return [
        {"id": tid, "name": name, "description": desc, "type": kind,
         "available": kind == "free" or unlocked}
        for tid, name, desc, kind in SHARE_THEMES
    ]


def select_share_theme(user: User, theme_id: str) -> dict:
    theme = next((t for t in list_share_themes(user) if t["id"] == theme_id), None)
    if theme is None:
        raise NotFound(f"share theme {theme_id!r} not found")
    if theme["type"] == "premium":
        require_premium(user, "premium_share_themes")
    return theme
