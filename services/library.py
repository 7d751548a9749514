import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from errors import Conflict, InvalidInput, NotFound
from models import Book, as_utc, utcnow

logger = logging.getLogger(__name__)

# scalar columns a partial update may touch
EDITABLE = (
    "title", "author", "total_pages", "current_page", "status", "cover_url", "isbn",
    "isbn13", "description", "publisher", "published_date", "language",
)
# columns a PATCH may clear with an explicit null
NULLABLE = ("cover_url", "isbn", "isbn13", "description", "publisher", "published_date", "language")


def _join_categories(categories) -> Optional[str]:
    tags = [c.strip() for c in categories or [] if c and c.strip()]
    return ",".join(dict.fromkeys(tags)) or None


def _check_pages(book: Book):
    if book.current_page < 0:
        raise InvalidInput("current_page must be >= 0")
    if book.current_page > book.total_pages:
        raise InvalidInput(
            f"current_page ({book.current_page}) exceeds total_pages ({book.total_pages})"
        )


def _duplicate(db: Session, user_id: str, title: str, author: str, exclude_id=None) -> bool:
    q = db.query(Book).filter_by(user_id=user_id, title=title, author=author)
    if exclude_id is not None:
        q = q.filter(Book.id != exclude_id)
    return q.first() is not None


def add_book(db: Session, user_id: str, data: dict) -> Book:
    data = dict(data)
    categories = data.pop("categories", None)
    data["started_at"] = as_utc(data.get("started_at")) or utcnow()
    book = Book(user_id=user_id, categories=_join_categories(categories), **data)
    _check_pages(book)
    if _duplicate(db, user_id, book.title, book.author):
        raise Conflict(f"{book.title!r} by {book.author} is already in your library")
    if book.current_page == book.total_pages:
        book.status = "completed"
    db.add(book)
    db.commit()
    db.refresh(book)
    logger.info("Added book %s (%s) for %s", book.id, book.title, user_id)
    return book


def get_book(db: Session, user_id: str, book_id: int) -> Book:
    book = db.query(Book).filter_by(id=book_id, user_id=user_id).first()
    if not book:
        raise NotFound(f"book {book_id} not found")
    return book


def list_books(db: Session, user_id: str, status: Optional[str] = None,
               q: Optional[str] = None) -> list:
    """Books for a user, newest first; `q` matches title or author, case-insensitively."""
    query = db.query(Book).filter(Book.user_id == user_id)
    if status:
        query = query.filter(Book.status == status)
    if q and q.strip():
        term = f"%{q.strip()}%"
        query = query.filter(or_(Book.title.ilike(term), Book.author.ilike(term)))
    return query.order_by(Book.started_at.desc(), Book.id.desc()).all()


def current_books(db: Session, user_id: str, q: Optional[str] = None) -> list:
    return list_books(db, user_id, status="reading", q=q)


def update_book(db: Session, user_id: str, book_id: int, updates: dict) -> Book:
    book = get_book(db, user_id, book_id)
    for key in EDITABLE:
        if key not in updates:
            continue
        if updates[key] is not None or key in NULLABLE:
            setattr(book, key, updates[key])
    if "categories" in updates:
        book.categories = _join_categories(updates["categories"])
    _check_pages(book)
    if _duplicate(db, user_id, book.title, book.author, exclude_id=book.id):
        raise Conflict(f"{book.title!r} by {book.author} is already in your library")

    # reaching the last page finishes the book unless the caller set a status
    if "current_page" in updates and updates.get("status") is None:
        if book.current_page == book.total_pages:
            book.status = "completed"
        elif book.status == "completed":
            book.status = "reading"
    db.commit()
    db.refresh(book)
    return book


def advance_book(book: Book, pages_read: int, when=None):
    """Move the bookmark forward after a session; caller commits."""
    reached = book.current_page + pages_read
    book.current_page = min(reached, book.total_pages)
    book.last_read_at = when or utcnow()
    book.status = "completed" if reached >= book.total_pages else "reading"


def delete_book(db: Session, user_id: str, book_id: int):
    book = get_book(db, user_id, book_id)
    db.delete(book)
    db.commit()
    logger.info("Deleted book %s for %s", book_id, user_id)
