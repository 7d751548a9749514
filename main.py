import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, UploadFile, File, HTTPException, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import config
import schemas
from database import Base, engine, SessionLocal
from errors import ReadlyError
from models import User, Book, ReadingSession, as_utc
from services import badges, library, premium, profile, sessions, settings, stats
from services.etl import import_snapshot

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("readly")

app = FastAPI(title="Readly API")

# create tables once at startup
Base.metadata.create_all(bind=engine)


@app.on_event("startup")
def seed_badges():
    if not config.SEED_BADGES:
        return
    db = SessionLocal()
    try:
        badges.ensure_badge_catalog(db)
    finally:
        db.close()


@app.exception_handler(ReadlyError)
def readly_error(request: Request, exc: ReadlyError):
    logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(
    x_user_id: str = Header(config.DEFAULT_USER_ID),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing user id")
    return profile.get_or_create_profile(db, x_user_id.strip())


def _awards(awards):
    return [schemas.UserBadgeOut.model_validate(a) for a in awards]


@app.get("/")
def health():
    return {"status": "ok"}


# -----------------------------
# Books
# -----------------------------
@app.post("/books", response_model=schemas.BookOut, status_code=201)
def add_book(payload: schemas.BookCreate, user: User = Depends(current_user),
             db: Session = Depends(get_db)):
    book = library.add_book(db, user.id, payload.model_dump())
    badges.check_and_award(db, user.id)
    return book


@app.get("/books", response_model=List[schemas.BookOut])
def list_books(status: Optional[schemas.BookStatus] = None, q: Optional[str] = None,
               user: User = Depends(current_user), db: Session = Depends(get_db)):
    return library.list_books(db, user.id, status, q=q)


@app.get("/books/current", response_model=List[schemas.BookOut])
def current_books(q: Optional[str] = None, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    return library.current_books(db, user.id, q=q)


@app.get("/books/{book_id}", response_model=schemas.BookOut)
def get_book(book_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return library.get_book(db, user.id, book_id)


@app.patch("/books/{book_id}", response_model=schemas.BookOut)
def update_book(book_id: int, payload: schemas.BookUpdate, user: User = Depends(current_user),
                db: Session = Depends(get_db)):
    book = library.update_book(db, user.id, book_id, payload.model_dump(exclude_unset=True))
    badges.check_and_award(db, user.id)
    return book


@app.delete("/books/{book_id}")
def delete_book(book_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    library.delete_book(db, user.id, book_id)
    badges.check_and_award(db, user.id)
    return {"success": True}


# -----------------------------
# Reading sessions & journal
# -----------------------------
@app.post("/sessions/start", response_model=schemas.SessionOut, status_code=201)
def start_session(payload: schemas.SessionStart, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    return sessions.start_session(db, user.id, payload.book_id, payload.start_time)


@app.get("/sessions/current", response_model=Optional[schemas.SessionOut])
def current_session(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return sessions.current_session(db, user.id)


@app.post("/sessions/{session_id}/end")
def end_session(session_id: int, payload: schemas.SessionEnd, user: User = Depends(current_user),
                db: Session = Depends(get_db)):
    s = sessions.end_session(db, user.id, session_id, **payload.model_dump())
    new = badges.check_and_award(db, user.id)
    return {"session": schemas.SessionOut.model_validate(s), "new_badges": _awards(new)}


@app.post("/sessions")
def create_session(payload: schemas.SessionCreate, user: User = Depends(current_user),
                   db: Session = Depends(get_db)):
    s = sessions.create_session(db, user.id, payload.model_dump())
    new = badges.check_and_award(db, user.id)
    return {"session": schemas.SessionOut.model_validate(s), "new_badges": _awards(new)}


@app.get("/sessions", response_model=List[schemas.SessionOut])
def get_sessions(book_id: Optional[int] = None, limit: Optional[int] = Query(None, ge=1),
                 user: User = Depends(current_user), db: Session = Depends(get_db)):
    return sessions.get_sessions(db, user.id, book_id=book_id, limit=limit)


@app.delete("/sessions/{session_id}")
def delete_session(session_id: int, user: User = Depends(current_user),
                   db: Session = Depends(get_db)):
    sessions.delete_session(db, user.id, session_id)
    badges.check_and_award(db, user.id)
    return {"success": True}


@app.post("/sessions/{session_id}/comments", response_model=schemas.CommentOut, status_code=201)
def add_comment(session_id: int, payload: schemas.CommentCreate,
                user: User = Depends(current_user), db: Session = Depends(get_db)):
    comment = sessions.add_comment(db, user.id, session_id, payload.text)
    badges.check_and_award(db, user.id)
    return comment


@app.get("/sessions/{session_id}/comments", response_model=List[schemas.CommentOut])
def get_comments(session_id: int, user: User = Depends(current_user),
                 db: Session = Depends(get_db)):
    return sessions.get_comments(db, user.id, session_id)


# -----------------------------
# Statistics
# -----------------------------
def _user_log(db: Session, user_id: str):
    log = db.query(ReadingSession).filter(ReadingSession.user_id == user_id).all()
    books = db.query(Book).filter(Book.user_id == user_id).all()
    return log, books


@app.get("/stats/overview")
def stats_overview(user: User = Depends(current_user), db: Session = Depends(get_db)):
    log, books = _user_log(db, user.id)
    return stats.calculate_stats(log, books)


@app.get("/stats/activity")
def stats_activity(
    period: Literal["day", "week", "month"] = "day",
    days: Optional[int] = Query(None, ge=1, le=3660),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    premium.require_premium(user, "advanced_analytics")
    log, _ = _user_log(db, user.id)
    return stats.reading_activity(log, period=period, days=days)


# -----------------------------
# Badges
# -----------------------------
@app.get("/badges", response_model=List[schemas.BadgeDefinitionOut])
def all_badges(db: Session = Depends(get_db)):
    return badges.list_definitions(db)


@app.post("/badges", response_model=schemas.BadgeDefinitionOut, status_code=201)
def create_badge(payload: schemas.BadgeDefinitionCreate, db: Session = Depends(get_db)):
    criteria = payload.criteria.model_dump(exclude_none=True) if payload.criteria else None
    return badges.create_badge_definition(
        db, payload.name, payload.description, payload.rarity, payload.category,
        icon_url=payload.icon_url, criteria=criteria, badge_id=payload.id,
    )


@app.get("/badges/me")
def my_badges(user: User = Depends(current_user), db: Session = Depends(get_db)):
    earned = badges.list_user_badges(db, user.id)
    grouped = badges.badges_by_rarity(earned)
    return {
        "earned": _awards(earned),
        "by_rarity": {rarity: _awards(items) for rarity, items in grouped.items()},
        "top": _awards(badges.top_badges(earned)),
    }


@app.get("/badges/{badge_id}/earned")
def has_badge(badge_id: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"badge_id": badge_id, "earned": badges.has_badge(db, user.id, badge_id)}


@app.post("/badges/award", response_model=schemas.UserBadgeOut, status_code=201)
def award_badge(payload: schemas.AwardRequest, user: User = Depends(current_user),
                db: Session = Depends(get_db)):
    return badges.award_badge(db, user.id, payload.badge_id)


@app.post("/badges/evaluate")
def evaluate_badges(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"new_badges": _awards(badges.check_and_award(db, user.id))}


# -----------------------------
# Profile & settings
# -----------------------------
@app.get("/profile", response_model=schemas.ProfileOut)
def get_profile(user: User = Depends(current_user)):
    return user


@app.patch("/profile", response_model=schemas.ProfileOut)
def update_profile(payload: schemas.ProfileUpdate, user: User = Depends(current_user),
                   db: Session = Depends(get_db)):
    updated = profile.update_profile(db, user.id, payload.model_dump(exclude_unset=True))
    badges.check_and_award(db, user.id)
    return updated


@app.get("/settings")
def get_settings(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return settings.get_settings(db, user.id)


@app.patch("/settings")
def update_settings(payload: Dict[str, Dict[str, Any]], user: User = Depends(current_user),
                    db: Session = Depends(get_db)):
    return settings.update_settings(db, user.id, payload)


@app.post("/settings/reset")
def reset_settings(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return settings.reset_settings(db, user.id)


# -----------------------------
# Premium
# -----------------------------
@app.get("/subscription")
def get_subscription(user: User = Depends(current_user)):
    return premium.subscription_status(user)


@app.put("/subscription")
def sync_subscription(payload: schemas.SubscriptionSync, user: User = Depends(current_user),
                      db: Session = Depends(get_db)):
    return premium.sync_subscription(
        db, user.id, payload.is_premium, plan=payload.plan,
        expires_at=as_utc(payload.expires_at), will_renew=payload.will_renew,
    )


@app.get("/premium/features")
def premium_features(user: User = Depends(current_user)):
    return premium.list_features(user)


@app.get("/share/themes")
def share_themes(user: User = Depends(current_user)):
    return premium.list_share_themes(user)


@app.post("/share/theme")
def select_share_theme(payload: schemas.ShareThemeSelect, user: User = Depends(current_user)):
    return premium.select_share_theme(user, payload.theme_id)


# -----------------------------
# Import
# -----------------------------
@app.post("/import/snapshot")
async def import_local_snapshot(
    file: UploadFile = File(...),
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
):
    if not file.filename.endswith(".json"):
        raise HTTPException(status_code=415, detail="upload a .json file")
    content = await file.read()
    result = import_snapshot(content, db, user.id)
    if not result["ok"]:
        raise HTTPException(status_code=422, detail=result["error"])
    badges.check_and_award(db, user.id)
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
