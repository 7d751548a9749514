from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from database import Base


def utcnow() -> datetime:
    # naive UTC everywhere; sqlite drops tzinfo anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(ts):
    """Normalise an incoming timestamp to naive UTC."""
    if ts is None or ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id     = Column(String, primary_key=True)
    name   = Column(String, nullable=False, default="Reading Enthusiast")
    bio    = Column(Text, nullable=False, default="Keep up the great reading habit!")
    age    = Column(Integer)
    gender = Column(String)                      # male | female | other | prefer-not-to-say
    profile_image = Column(String)
    settings = Column(JSON)                      # nested AppSettings groups, None = defaults

    is_premium = Column(Boolean, nullable=False, default=False)
    plan       = Column(String, nullable=False, default="free")
    premium_expires_at = Column(DateTime)
    will_renew = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    books    = relationship("Book", back_populates="user", cascade="all, delete")
    sessions = relationship("ReadingSession", back_populates="user")
    badges   = relationship("UserBadge", back_populates="user", cascade="all, delete")


class Book(Base):
    __tablename__ = "books"
    id      = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title   = Column(String, nullable=False, index=True)
    author  = Column(String, nullable=False, index=True)
    cover_url   = Column(String)
    isbn        = Column(String)
    isbn13      = Column(String)
    description = Column(Text)
    publisher   = Column(String)
    published_date = Column(String)
    categories  = Column(String)                 # comma-joined tags
    language    = Column(String)
    total_pages  = Column(Integer, nullable=False)
    current_page = Column(Integer, nullable=False, default=0)
    status       = Column(String, nullable=False, default="reading")  # reading | completed | paused
    started_at   = Column(DateTime, nullable=False, default=utcnow)
    last_read_at = Column(DateTime)
    __table_args__ = (UniqueConstraint("user_id", "title", "author", name="uq_user_title_author"),)

    user     = relationship("User", back_populates="books")
    sessions = relationship("ReadingSession", back_populates="book", cascade="all, delete")

    @property
    def category_list(self):
        return [c.strip() for c in (self.categories or "").split(",") if c.strip()]


class ReadingSession(Base):
    __tablename__ = "reading_sessions"
    id      = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time   = Column(DateTime)                # None while the session is open
    pages_read = Column(Integer, nullable=False, default=0)
    duration   = Column(Integer, nullable=False, default=0)   # minutes
    reflection = Column(Text)
    mood       = Column(String)                  # excited | calm | thoughtful | inspired | tired
    location   = Column(String)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user     = relationship("User", back_populates="sessions")
    book     = relationship("Book", back_populates="sessions")
    comments = relationship("SessionComment", back_populates="session",
                            cascade="all, delete", order_by="SessionComment.created_at")

    @property
    def is_open(self):
        return self.end_time is None


class SessionComment(Base):
    __tablename__ = "session_comments"
    id         = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("reading_sessions.id"), nullable=False, index=True)
    user_id    = Column(String, ForeignKey("users.id"), nullable=False)
    text       = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, onupdate=utcnow)

    session = relationship("ReadingSession", back_populates="comments")


class BadgeDefinition(Base):
    __tablename__ = "badge_definitions"
    id          = Column(String, primary_key=True)
    name        = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    rarity      = Column(String, nullable=False)
    icon_url    = Column(String, nullable=False, default="")
    category    = Column(String, nullable=False)
    criteria    = Column(JSON)                   # {"type", "value", "condition"} or None
    created_at  = Column(DateTime, nullable=False, default=utcnow)
    updated_at  = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class UserBadge(Base):
    __tablename__ = "user_badges"
    id        = Column(Integer, primary_key=True, autoincrement=True)
    user_id   = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    badge_id  = Column(String, ForeignKey("badge_definitions.id"), nullable=False)
    earned_at = Column(DateTime, nullable=False, default=utcnow)
    __table_args__ = (UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),)

    user  = relationship("User", back_populates="badges")
    badge = relationship("BadgeDefinition")
