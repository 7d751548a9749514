import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import Conflict, InvalidInput, NotFound
from models import ReadingSession, SessionComment, as_utc, utcnow
from services.library import get_book, advance_book

logger = logging.getLogger(__name__)


def minutes_between(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() // 60))


def get_session(db: Session, user_id: str, session_id: int) -> ReadingSession:
    s = db.query(ReadingSession).filter_by(id=session_id, user_id=user_id).first()
    if not s:
        raise NotFound(f"session {session_id} not found")
    return s


def open_session_for(db: Session, book_id: int, exclude_id=None) -> Optional[ReadingSession]:
    q = db.query(ReadingSession).filter(ReadingSession.book_id == book_id,
                                        ReadingSession.end_time.is_(None))
    if exclude_id is not None:
        q = q.filter(ReadingSession.id != exclude_id)
    return q.first()


def current_session(db: Session, user_id: str) -> Optional[ReadingSession]:
    return (
        db.query(ReadingSession)
          .filter(ReadingSession.user_id == user_id, ReadingSession.end_time.is_(None))
          .order_by(ReadingSession.start_time.desc())
          .first()
    )


def start_session(db: Session, user_id: str, book_id: int, start_time=None) -> ReadingSession:
    book = get_book(db, user_id, book_id)
    if open_session_for(db, book.id):
        raise Conflict(f"book {book.id} already has an open reading session")
    s = ReadingSession(user_id=user_id, book_id=book.id,
                       start_time=as_utc(start_time) or utcnow(), pages_read=0, duration=0)
    db.add(s)
    db.commit()
    db.refresh(s)
    logger.info("Started session %s on book %s", s.id, book.id)
    return s


def end_session(db: Session, user_id: str, session_id: int, pages_read: int,
                reflection=None, mood=None, location=None, end_time=None) -> ReadingSession:
    s = get_session(db, user_id, session_id)
    if not s.is_open:
        raise Conflict(f"session {session_id} has already ended")
    end = as_utc(end_time) or utcnow()
    if end < s.start_time:
        raise InvalidInput("end_time is before start_time")

    s.end_time = end
    s.pages_read = pages_read
    s.duration = minutes_between(s.start_time, end)
    s.reflection = reflection
    s.mood = mood
    s.location = location
    advance_book(s.book, pages_read, when=end)
    db.commit()
    db.refresh(s)
    logger.info("Ended session %s: %d pages in %d min", s.id, s.pages_read, s.duration)
    return s


def create_session(db: Session, user_id: str, data: dict) -> ReadingSession:
    """Journal upsert of a full session record; an existing id is overwritten."""
    book = get_book(db, user_id, data["book_id"])
    start = as_utc(data["start_time"])
    end = as_utc(data.get("end_time"))
    if end is not None and end < start:
        raise InvalidInput("end_time is before start_time")

    s = None
    if data.get("id") is not None:
        s = db.query(ReadingSession).filter_by(id=data["id"]).first()
        if s is not None and s.user_id != user_id:
            raise Conflict(f"session id {data['id']} is taken")
    if end is None and open_session_for(db, book.id, exclude_id=s.id if s else None):
        raise Conflict(f"book {book.id} already has an open reading session")

    duration = data.get("duration")
    if duration is None:
        duration = minutes_between(start, end) if end else 0

    if s is None:
        s = ReadingSession(user_id=user_id)
        if data.get("id") is not None:
            s.id = data["id"]
        db.add(s)
    s.book_id = book.id
    s.start_time = start
    s.end_time = end
    s.pages_read = data.get("pages_read") or 0
    s.duration = duration
    s.reflection = data.get("reflection")
    s.mood = data.get("mood")
    s.location = data.get("location")
    db.commit()
    db.refresh(s)
    return s


def get_sessions(db: Session, user_id: str, book_id: Optional[int] = None,
                 limit: Optional[int] = None) -> list:
    q = db.query(ReadingSession).filter(ReadingSession.user_id == user_id)
    if book_id is not None:
        q = q.filter(ReadingSession.book_id == book_id)
    q = q.order_by(func.coalesce(ReadingSession.end_time, ReadingSession.start_time).desc(),
                   ReadingSession.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def delete_session(db: Session, user_id: str, session_id: int):
    s = get_session(db, user_id, session_id)
    db.delete(s)
    db.commit()
    logger.info("Deleted session %s", session_id)


def add_comment(db: Session, user_id: str, session_id: int, text: str) -> SessionComment:
    s = get_session(db, user_id, session_id)
    c = SessionComment(session_id=s.id, user_id=user_id, text=text.strip())
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def get_comments(db: Session, user_id: str, session_id: int) -> list:
    s = get_session(db, user_id, session_id)
    return (
        db.query(SessionComment)
          .filter(SessionComment.session_id == s.id)
          .order_by(SessionComment.created_at.asc(), SessionComment.id.asc())
          .all()
    )
