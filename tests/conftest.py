import os

# must be set before the app modules build their engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_BADGES"] = "0"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

import main
from database import Base, engine, SessionLocal
from models import Book, ReadingSession, utcnow
from services.badges import ensure_badge_catalog


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    ensure_badge_catalog(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    return TestClient(main.app)


@pytest.fixture
def book(client):
    r = client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "total_pages": 100,
                                    "categories": ["Science Fiction"]})
    assert r.status_code == 201
    return r.json()


def make_session(end=None, pages=10, minutes=30, book_id=1, start=None, **kw):
    if start is None and end is not None:
        start = end - timedelta(minutes=minutes)
    return ReadingSession(book_id=book_id, start_time=start or utcnow(), end_time=end,
                          pages_read=pages, duration=minutes, **kw)


def make_book(title="Dune", author="Frank Herbert", status="reading", categories=None, total=100):
    return Book(title=title, author=author, status=status, categories=categories,
                total_pages=total, current_page=total if status == "completed" else 0)


def at(day, hour=12, minute=0):
    return datetime(2026, 10, day, hour, minute)
