import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from config import TZ_OFFSET_HOURS
from errors import Conflict, NotFound
from models import BadgeDefinition, Book, ReadingSession, SessionComment, User, UserBadge, utcnow
from services.stats import local_day, reading_days, current_streak, longest_streak

logger = logging.getLogger(__name__)

RARITY_ORDER = ["common", "uncommon", "rare", "epic", "legendary", "mythic", "godtier"]
MOODS = {"excited", "calm", "thoughtful", "inspired", "tired"}

# id, name, description, rarity, category, criteria
DEFAULT_BADGES = [
    ("first_chapter",     "First Chapter",      "Finish your first reading session",           "common",    "special",    {"type": "custom", "condition": "first_session"}),
    ("hour_glass",        "Hour Glass",         "Read for a total of 60 minutes",              "common",    "time",       {"type": "time", "value": 60}),
    ("bookworm",          "Bookworm",           "Read for a total of 10 hours",                "rare",      "time",       {"type": "time", "value": 600}),
    ("time_lord",         "Time Lord",          "Read for a total of 100 hours",               "legendary", "time",       {"type": "time", "value": 6000}),
    ("first_finish",      "The End",            "Complete your first book",                    "common",    "books",      {"type": "books_read", "value": 1}),
    ("shelf_builder",     "Shelf Builder",      "Complete 5 books",                            "uncommon",  "books",      {"type": "books_read", "value": 5}),
    ("librarian",         "Librarian",          "Complete 25 books",                           "epic",      "books",      {"type": "books_read", "value": 25}),
    ("centurion",         "Centurion",          "Complete 100 books",                          "godtier",   "books",      {"type": "books_read", "value": 100}),
    ("page_turner",       "Page Turner",        "Read 100 pages",                              "common",    "pages",      {"type": "pages", "value": 100}),
    ("thousand_pages",    "Thousand Pages",     "Read 1,000 pages",                            "rare",      "pages",      {"type": "pages", "value": 1000}),
    ("ten_thousand",      "Paper Mountain",     "Read 10,000 pages",                           "mythic",    "pages",      {"type": "pages", "value": 10000}),
    ("streak_3",          "Warming Up",         "Read 3 days in a row",                        "common",    "streak",     {"type": "streak", "value": 3}),
    ("streak_7",          "Week Warrior",       "Read 7 days in a row",                        "uncommon",  "streak",     {"type": "streak", "value": 7}),
    ("streak_30",         "Habit Formed",       "Read 30 days in a row",                       "epic",      "streak",     {"type": "streak", "value": 30}),
    ("streak_100",        "Unbreakable",        "Read 100 days in a row",                      "legendary", "streak",     {"type": "streak", "value": 100}),
    ("genre_explorer",    "Genre Explorer",     "Complete books in 3 different genres",        "uncommon",  "genre",      {"type": "genre", "value": 3}),
    ("author_collector",  "Author Collector",   "Complete books by 5 different authors",       "rare",      "author",     {"type": "author", "value": 5}),
    ("night_owl",         "Night Owl",          "Finish a session after 10 PM",                "uncommon",  "special",    {"type": "custom", "condition": "night_owl"}),
    ("early_bird",        "Early Bird",         "Start a session before 7 AM",                 "uncommon",  "special",    {"type": "custom", "condition": "early_bird"}),
    ("weekend_reader",    "Weekend Reader",     "Read on 4 weekend days",                      "common",    "special",    {"type": "custom", "condition": "weekend_reader", "value": 4}),
    ("marathon",          "Marathon",           "Read for 2 hours in a single session",        "rare",      "time",       {"type": "custom", "condition": "marathon", "value": 120}),
    ("page_sprint",       "Page Sprint",        "Read 100 pages in a single day",              "rare",      "pages",      {"type": "custom", "condition": "page_sprint", "value": 100}),
    ("reflective",        "Deep Thinker",       "Write 10 session reflections",                "uncommon",  "reflection", {"type": "custom", "condition": "reflective", "value": 10}),
    ("mood_explorer",     "Full Spectrum",      "Log every reading mood",                      "rare",      "reflection", {"type": "custom", "condition": "mood_explorer"}),
    ("conversationalist", "Conversationalist",  "Leave 5 comments on your journal",            "common",    "social",     {"type": "custom", "condition": "conversationalist", "value": 5}),
    ("introductions",     "Introductions",      "Fill in your profile",                        "common",    "social",     {"type": "custom", "condition": "profile_complete"}),
    ("founding_reader",   "Founding Reader",    "Joined during launch",                        "epic",      "events",     None),
]


@dataclass
class BadgeState:
    total_minutes: int = 0
    total_pages: int = 0
    books_completed: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    sessions: int = 0
    reflections: int = 0
    authors: Counter = field(default_factory=Counter)
    genres: Counter = field(default_factory=Counter)
    longest_session: int = 0
    best_day_pages: int = 0
    night_sessions: int = 0
    early_sessions: int = 0
    weekend_days: int = 0
    moods: set = field(default_factory=set)
    comments: int = 0
    profile_complete: bool = False


def build_state(sessions, books, comments: int = 0, profile=None,
                now: Optional[datetime] = None, tz_offset_hours: float = TZ_OFFSET_HOURS) -> BadgeState:
    now = now or utcnow()
    done = [s for s in sessions if s.end_time is not None]
    days = reading_days(done, tz_offset_hours)
    completed = [b for b in books if b.status == "completed"]

    pages_by_day = Counter()
    for s in done:
        pages_by_day[local_day(s.end_time, tz_offset_hours)] += s.pages_read or 0

    shift = timedelta(hours=tz_offset_hours)
    state = BadgeState(
        total_minutes=sum(s.duration or 0 for s in done),
        total_pages=sum(s.pages_read or 0 for s in done),
        books_completed=len(completed),
        current_streak=current_streak(days, local_day(now, tz_offset_hours)),
        longest_streak=longest_streak(days),
        sessions=len(done),
        reflections=sum(1 for s in done if (s.reflection or "").strip()),
        authors=Counter(b.author.strip().lower() for b in completed if b.author),
        genres=Counter(g.lower() for b in completed for g in b.category_list),
        longest_session=max((s.duration or 0 for s in done), default=0),
        best_day_pages=max(pages_by_day.values(), default=0),
        night_sessions=sum(1 for s in done if (s.end_time + shift).hour >= 22 or (s.end_time + shift).hour < 4),
        early_sessions=sum(1 for s in done if 4 <= (s.start_time + shift).hour < 7),
        weekend_days=sum(1 for d in days if d.weekday() >= 5),
        moods={s.mood for s in done if s.mood},
        comments=comments,
    )
    if profile is not None:
        state.profile_complete = bool(
            profile.profile_image and (profile.bio or "").strip() and profile.name
        )
    return state


def _threshold(value, default=1):
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


CUSTOM_RULES = {
    "first_session":     lambda st, v: st.sessions >= _threshold(v),
    "night_owl":         lambda st, v: st.night_sessions >= _threshold(v),
    "early_bird":        lambda st, v: st.early_sessions >= _threshold(v),
    "weekend_reader":    lambda st, v: st.weekend_days >= _threshold(v, 2),
    "marathon":          lambda st, v: st.longest_session >= _threshold(v, 120),
    "page_sprint":       lambda st, v: st.best_day_pages >= _threshold(v, 100),
    "reflective":        lambda st, v: st.reflections >= _threshold(v),
    "mood_explorer":     lambda st, v: MOODS <= st.moods,
    "conversationalist": lambda st, v: st.comments >= _threshold(v),
    "profile_complete":  lambda st, v: st.profile_complete,
}


def _named_or_distinct(counter: Counter, value, condition) -> bool:
    # a name counts books for that author/genre, a number counts distinct ones
    if isinstance(value, str) and not value.strip().isdigit():
        return counter.get(value.strip().lower(), 0) >= _threshold(condition)
    return len(counter) >= _threshold(value)


def criteria_met(criteria: Optional[dict], state: BadgeState) -> bool:
    if not criteria:
        return False
    kind = criteria.get("type")
    value = criteria.get("value")
    condition = criteria.get("condition")

    if kind == "time":
        return state.total_minutes >= _threshold(value)
    if kind == "books_read":
        return state.books_completed >= _threshold(value)
    if kind == "pages":
        return state.total_pages >= _threshold(value)
    if kind == "streak":
        return state.longest_streak >= _threshold(value)
    if kind == "genre":
        return _named_or_distinct(state.genres, value, condition)
    if kind == "author":
        return _named_or_distinct(state.authors, value, condition)
    if kind == "custom":
        rule = CUSTOM_RULES.get(condition)
        return bool(rule and rule(state, value))
    return False


def evaluate(definitions, state: BadgeState, earned_ids) -> list:
    """Definitions newly satisfied by `state`, skipping anything already earned."""
    seen = set(earned_ids)
    out = []
    for d in definitions:
        if d.id in seen:
            continue
        if criteria_met(d.criteria, state):
            out.append(d)
            seen.add(d.id)
    return out


# -----------------------------
# persistence
# -----------------------------
def ensure_badge_catalog(db: Session) -> int:
    existing = {bid for (bid,) in db.query(BadgeDefinition.id).all()}
    added = 0
    for bid, name, desc, rarity, category, criteria in DEFAULT_BADGES:
        if bid in existing:
            continue
        db.add(BadgeDefinition(id=bid, name=name, description=desc, rarity=rarity,
                               category=category, criteria=criteria))
        added += 1
    db.commit()
    if added:
        logger.info("Seeded %d badge definitions", added)
    return added


def create_badge_definition(db: Session, name, description, rarity, category,
                            icon_url="", criteria=None, badge_id=None) -> BadgeDefinition:
    badge_id = badge_id or "badge_" + "_".join(name.lower().split())
    if db.get(BadgeDefinition, badge_id):
        raise Conflict(f"badge definition {badge_id!r} already exists")
    logger.info("Creating badge definition: %s", name)
    badge = BadgeDefinition(id=badge_id, name=name, description=description, rarity=rarity,
                            icon_url=icon_url, category=category, criteria=criteria)
    db.add(badge)
    db.commit()
    db.refresh(badge)
    return badge


def list_definitions(db: Session) -> list:
    badges = db.query(BadgeDefinition).all()
    badges.sort(key=lambda b: (-RARITY_ORDER.index(b.rarity), b.name))
    logger.info("Fetched %d badge definitions", len(badges))
    return badges


def list_user_badges(db: Session, user_id: str) -> list:
    return (
        db.query(UserBadge)
          .options(joinedload(UserBadge.badge))
          .filter(UserBadge.user_id == user_id)
          .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
          .all()
    )


def has_badge(db: Session, user_id: str, badge_id: str) -> bool:
    return db.query(UserBadge).filter_by(user_id=user_id, badge_id=badge_id).first() is not None


def badges_by_rarity(user_badges) -> dict:
    grouped = {r: [] for r in RARITY_ORDER}
    for ub in user_badges:
        if ub.badge is not None:
            grouped[ub.badge.rarity].append(ub)
    return grouped


def top_badges(user_badges, limit: int = 5) -> list:
    ranked = sorted(
        (ub for ub in user_badges if ub.badge is not None),
        key=lambda ub: -RARITY_ORDER.index(ub.badge.rarity),
    )
    return ranked[:limit]


def award_badge(db: Session, user_id: str, badge_id: str) -> UserBadge:
    logger.info("Awarding badge %s to user %s", badge_id, user_id)
    if not db.get(BadgeDefinition, badge_id):
        raise NotFound(f"badge {badge_id!r} not found")
    if has_badge(db, user_id, badge_id):
        raise Conflict("Badge already earned")
    award = UserBadge(user_id=user_id, badge_id=badge_id, earned_at=utcnow())
    db.add(award)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Badge already earned")
    db.refresh(award)
    return award


def user_state(db: Session, user_id: str, now: Optional[datetime] = None) -> BadgeState:
    sessions = db.query(ReadingSession).filter(ReadingSession.user_id == user_id).all()
    books = db.query(Book).filter(Book.user_id == user_id).all()
    comments = db.query(SessionComment).filter(SessionComment.user_id == user_id).count()
    profile = db.get(User, user_id)
    return build_state(sessions, books, comments=comments, profile=profile, now=now)


def _earned_ids(db: Session, user_id: str) -> set:
    return {bid for (bid,) in db.query(UserBadge.badge_id).filter(UserBadge.user_id == user_id).all()}


def check_and_award(db: Session, user_id: str, now: Optional[datetime] = None) -> list:
    """Re-run every rule for the user and persist the awards that became true."""
    state = user_state(db, user_id, now=now)
    new = evaluate(db.query(BadgeDefinition).all(), state, _earned_ids(db, user_id))
    if not new:
        return []

    stamp = utcnow()
    awards = [UserBadge(user_id=user_id, badge_id=d.id, earned_at=stamp) for d in new]
    db.add_all(awards)
    try:
        db.commit()
    except IntegrityError:
        # another request awarded some of these first; keep the rest
        db.rollback()
        earned = _earned_ids(db, user_id)
        new = [d for d in new if d.id not in earned]
        if not new:
            return []
        awards = [UserBadge(user_id=user_id, badge_id=d.id, earned_at=stamp) for d in new]
        db.add_all(awards)
        db.commit()
    for a in awards:
        db.refresh(a)
    logger.info("User %s earned %s", user_id, ", ".join(d.id for d in new))
    return awards
