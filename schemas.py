"""
Request and response models for the Readly API.

Requests validate shape and ranges; cross-field invariants (current page vs.
total pages, one open session per book) are enforced in the services.
"""

from datetime import datetime
from typing import Optional, List, Literal, Any, Dict

from pydantic import BaseModel, ConfigDict, Field

BookStatus = Literal["reading", "completed", "paused"]
Mood = Literal["excited", "calm", "thoughtful", "inspired", "tired"]
Gender = Literal["male", "female", "other", "prefer-not-to-say"]
Rarity = Literal["common", "uncommon", "rare", "epic", "legendary", "mythic", "godtier"]
BadgeCategory = Literal[
    "time", "books", "genre", "author", "streak", "pages",
    "special", "reflection", "social", "events",
]
Plan = Literal["free", "monthly", "yearly"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Books
# -----------------------------
class BookCreate(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    total_pages: int = Field(..., ge=1)
    current_page: int = Field(0, ge=0)
    status: BookStatus = "reading"
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    description: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    started_at: Optional[datetime] = None


class BookUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    total_pages: Optional[int] = Field(None, ge=1)
    current_page: Optional[int] = Field(None, ge=0)
    status: Optional[BookStatus] = None
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    description: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    categories: Optional[List[str]] = None
    language: Optional[str] = None


class BookOut(ORMModel):
    id: int
    title: str
    author: str
    total_pages: int
    current_page: int
    status: BookStatus
    cover_url: Optional[str] = None
    isbn: Optional[str] = None
    isbn13: Optional[str] = None
    description: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None
    categories: List[str] = Field(default_factory=list, validation_alias="category_list")
    language: Optional[str] = None
    started_at: datetime
    last_read_at: Optional[datetime] = None


# -----------------------------
# Sessions & journal
# -----------------------------
class SessionStart(BaseModel):
    book_id: int
    start_time: Optional[datetime] = None


class SessionEnd(BaseModel):
    pages_read: int = Field(..., ge=0)
    reflection: Optional[str] = None
    mood: Optional[Mood] = None
    location: Optional[str] = None
    end_time: Optional[datetime] = None


class SessionCreate(BaseModel):
    id: Optional[int] = None
    book_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    pages_read: int = Field(0, ge=0)
    duration: Optional[int] = Field(None, ge=0)
    reflection: Optional[str] = None
    mood: Optional[Mood] = None
    location: Optional[str] = None


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1)


class CommentOut(ORMModel):
    id: int
    session_id: int
    user_id: str
    text: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class SessionOut(ORMModel):
    id: int
    book_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    pages_read: int
    duration: int
    reflection: Optional[str] = None
    mood: Optional[Mood] = None
    location: Optional[str] = None


# -----------------------------
# Badges
# -----------------------------
class Criteria(BaseModel):
    type: Literal["time", "books_read", "genre", "author", "streak", "pages", "custom"]
    value: Optional[Any] = None
    condition: Optional[str] = None


class BadgeDefinitionCreate(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str
    rarity: Rarity
    icon_url: str = ""
    category: BadgeCategory
    criteria: Optional[Criteria] = None


class BadgeDefinitionOut(ORMModel):
    id: str
    name: str
    description: str
    rarity: Rarity
    icon_url: str
    category: str
    criteria: Optional[Dict[str, Any]] = None


class UserBadgeOut(ORMModel):
    id: int
    badge_id: str
    earned_at: datetime
    badge: Optional[BadgeDefinitionOut] = None


class AwardRequest(BaseModel):
    badge_id: str


# -----------------------------
# Profile, settings, premium
# -----------------------------
class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    bio: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[Gender] = None
    profile_image: Optional[str] = None


class ProfileOut(ORMModel):
    id: str
    name: str
    bio: str
    age: Optional[int] = None
    gender: Optional[Gender] = None
    profile_image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class NotificationSettings(BaseModel):
    enabled: bool = True
    reading_reminders: bool = True
    goal_reminders: bool = True
    streak_reminders: bool = True
    achievements: bool = True
    reminder_time: str = Field("20:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


class ReadingSettings(BaseModel):
    default_goal: int = Field(30, ge=1)
    auto_tracking: bool = False
    show_page_count: bool = True
    show_progress_percentage: bool = True


class PrivacySettings(BaseModel):
    share_stats: bool = True
    show_profile: bool = True
    allow_analytics: bool = True


class GeneralSettings(BaseModel):
    language: str = "en"
    date_format: str = "MM/DD/YYYY"
    time_format: Literal["12h", "24h"] = "12h"
    sound_effects: bool = True
    haptics: bool = True


class AppSettings(BaseModel):
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    reading: ReadingSettings = Field(default_factory=ReadingSettings)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    general: GeneralSettings = Field(default_factory=GeneralSettings)


class SubscriptionSync(BaseModel):
    is_premium: bool
    plan: Plan = "free"
    expires_at: Optional[datetime] = None
    will_renew: bool = False


class ShareThemeSelect(BaseModel):
    theme_id: str
