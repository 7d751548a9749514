import json
import logging
from datetime import datetime, timezone

import pandas as pd
from sqlalchemy.orm import Session

from models import Book, ReadingSession, User, utcnow

logger = logging.getLogger(__name__)

# keys the mobile client uses for its offline cache
BOOKS_KEY = "reading_ritual_books"
SESSIONS_KEY = "reading_ritual_sessions"
PROFILE_KEY = "readly_user_profile"

STATUSES = {"reading", "completed", "paused"}
MOODS = {"excited", "calm", "thoughtful", "inspired", "tired"}


def _to_int(x):
    try:
        if x is None:
            return None
        if isinstance(x, (int, float)):
            if pd.isna(x):
                return None
            return int(float(x))
        # strings like "384.0" or "1,024"
        s = str(x).strip()
        if not s or s.lower() == "nan":
            return None
        return int(float(s.replace(",", "")))
    except (TypeError, ValueError):
        return None


def _to_str(x):
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    s = str(x).strip()
    return s or None


def _ref(x):
    # ids may arrive as strings ("1700000000000") or numbers, floats once pandas sees a gap
    if isinstance(x, float) and not pd.isna(x) and x.is_integer():
        return str(int(x))
    return _to_str(x)


def _to_datetime(s):
    # ISO strings from Date.toISOString(), stored as naive UTC
    s = _to_str(s)
    if not s:
        return None
    try:
        ts = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def _pick(row, *keys):
    # snapshots mix camelCase (local cache) and snake_case (server rows)
    for k in keys:
        if k in row and _to_str(row[k]) is not None:
            return row[k]
    return None


def _decoded(snapshot: dict, key: str, kind: type):
    # the client stores each key as a JSON string, exports may inline it
    value = snapshot.get(key)
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValueError(f"{key} is not valid JSON")
    if value is not None and not isinstance(value, kind):
        raise ValueError(f"{key} must be a JSON {'object' if kind is dict else 'array'}")
    return value


def _frame(records) -> pd.DataFrame:
    if any(not isinstance(r, dict) for r in records or []):
        raise ValueError("records must be JSON objects")
    return pd.DataFrame(records or [])


def import_snapshot(file_bytes: bytes, db: Session, user_id: str) -> dict:
    """Upsert a client's offline cache (books, sessions, profile) into the database."""
    try:
        snapshot = json.loads(file_bytes)
    except ValueError:
        return {"ok": False, "error": "snapshot is not valid JSON"}
    if not isinstance(snapshot, dict) or not any(
        k in snapshot for k in (BOOKS_KEY, SESSIONS_KEY, PROFILE_KEY)
    ):
        return {"ok": False, "error": f"missing keys: expected any of {[BOOKS_KEY, SESSIONS_KEY, PROFILE_KEY]}"}
    try:
        profile = _decoded(snapshot, PROFILE_KEY, dict)
        books = _frame(_decoded(snapshot, BOOKS_KEY, list))
        sessions = _frame(_decoded(snapshot, SESSIONS_KEY, list))
    except ValueError as e:
        return {"ok": False, "error": str(e)}

    user = db.query(User).filter_by(id=user_id).first()
    if not user:
        user = User(id=user_id)
        db.add(user)
        db.flush()

    if profile:
        for key, src in (("name", "name"), ("bio", "bio"), ("profile_image", "profileImage")):
            value = _to_str(profile.get(src) or profile.get(key))
            if value:
                setattr(user, key, value)
        age = _to_int(profile.get("age"))
        if age is not None:
            user.age = age

    books_upserted = 0
    sessions_upserted = 0
    skipped = 0
    book_ids = {}          # snapshot id -> database id

    for _, row in books.iterrows():
        row = row.to_dict()
        title = _to_str(row.get("title"))
        author = _to_str(row.get("author"))
        total = _to_int(_pick(row, "totalPages", "total_pages", "pageCount", "page_count"))
        if not title or not author or not total or total < 1:
            skipped += 1
            continue

        current = min(max(_to_int(_pick(row, "currentPage", "current_page")) or 0, 0), total)
        status = _to_str(row.get("status"))
        status = status if status in STATUSES else "reading"
        categories = row.get("categories")
        if isinstance(categories, list):
            categories = ",".join(c.strip() for c in categories if isinstance(c, str) and c.strip())
        elif not isinstance(categories, str):
            categories = None

        # get-or-create book on (title, author)
        book = db.query(Book).filter_by(user_id=user_id, title=title, author=author).first()
        if not book:
            book = Book(user_id=user_id, title=title, author=author, total_pages=total,
                        current_page=current, status=status,
                        started_at=_to_datetime(_pick(row, "startedAt", "started_at")) or utcnow())
            db.add(book)
            books_upserted += 1
        else:
            book.total_pages = max(book.total_pages, total)
            if current > book.current_page:
                book.current_page = current
                book.status = status

        book.cover_url = book.cover_url or _to_str(_pick(row, "coverUrl", "cover_url", "thumbnail"))
        book.isbn = book.isbn or _to_str(row.get("isbn"))
        book.isbn13 = book.isbn13 or _to_str(row.get("isbn13"))
        book.publisher = book.publisher or _to_str(row.get("publisher"))
        book.language = book.language or _to_str(row.get("language"))
        book.categories = book.categories or _to_str(categories)
        last_read = _to_datetime(_pick(row, "lastReadAt", "last_read_at"))
        if last_read and (book.last_read_at is None or last_read > book.last_read_at):
            book.last_read_at = last_read

        db.flush()  # ensure book.id exists
        if _ref(row.get("id")):
            book_ids[_ref(row["id"])] = book.id

    for _, row in sessions.iterrows():
        row = row.to_dict()
        ref = _ref(_pick(row, "bookId", "book_id"))
        book_id = book_ids.get(ref)
        start = _to_datetime(_pick(row, "startTime", "start_time"))
        if book_id is None or start is None:
            skipped += 1
            continue
        end = _to_datetime(_pick(row, "endTime", "end_time"))
        if end is not None and end < start:
            skipped += 1
            continue

        session = (
            db.query(ReadingSession)
              .filter_by(user_id=user_id, book_id=book_id, start_time=start)
              .first()
        )
        if not session:
            if end is None and db.query(ReadingSession).filter_by(book_id=book_id, end_time=None).first():
                # one open session per book
                skipped += 1
                continue
            session = ReadingSession(user_id=user_id, book_id=book_id, start_time=start)
            db.add(session)
            sessions_upserted += 1

        # update fields if present
        if end is not None:
            session.end_time = end
        session.pages_read = max(_to_int(_pick(row, "pagesRead", "pages_read")) or 0, 0)
        session.duration = max(_to_int(row.get("duration")) or 0, 0)
        session.reflection = _to_str(row.get("reflection")) or session.reflection
        mood = _to_str(row.get("mood"))
        if mood in MOODS:
            session.mood = mood
        session.location = _to_str(row.get("location")) or session.location
        db.flush()

    db.commit()
    logger.info("Imported snapshot for %s: %d books, %d sessions, %d skipped",
                user_id, books_upserted, sessions_upserted, skipped)
    return {
        "ok": True,
        "books_upserted": books_upserted,
        "sessions_upserted": sessions_upserted,
        "skipped": skipped,
        "total_rows": int(len(books) + len(sessions)),
    }
