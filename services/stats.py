from datetime import date, datetime, timedelta
from typing import Iterable, Optional

import pandas as pd

from config import TZ_OFFSET_HOURS
from models import utcnow

PERIODS = ("day", "week", "month")
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def local_day(ts: datetime, tz_offset_hours: float = TZ_OFFSET_HOURS) -> date:
    """Calendar day of a naive-UTC timestamp in the user's local offset."""
    return (ts + timedelta(hours=tz_offset_hours)).date()


def _completed(sessions):
    return [s for s in sessions if s.end_time is not None]


def reading_days(sessions, tz_offset_hours: float = TZ_OFFSET_HOURS) -> set:
    return {local_day(s.end_time, tz_offset_hours) for s in _completed(sessions)}


def current_streak(days: Iterable[date], today: date) -> int:
    """Consecutive reading days ending today, or yesterday if today has no entry yet."""
    days = set(days)
    cursor = today if today in days else today - timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_streak(days: Iterable[date]) -> int:
    best = run = 0
    prev = None
    for d in sorted(set(days)):
        run = run + 1 if prev is not None and d - prev == timedelta(days=1) else 1
        best = max(best, run)
        prev = d
    return best


def calculate_stats(sessions, books, now: Optional[datetime] = None,
                    tz_offset_hours: float = TZ_OFFSET_HOURS) -> dict:
    # open sessions (no end_time) never count towards totals or streaks
    now = now or utcnow()
    done = _completed(sessions)
    days = reading_days(done, tz_offset_hours)
    week_ago = now - timedelta(days=7)

    return {
        "total_books_read": sum(1 for b in books if b.status == "completed"),
        "total_pages_read": sum(s.pages_read or 0 for s in done),
        "total_minutes_read": sum(s.duration or 0 for s in done),
        "current_streak": current_streak(days, local_day(now, tz_offset_hours)),
        "longest_streak": longest_streak(days),
        "sessions_this_week": sum(1 for s in done if s.end_time >= week_ago),
    }


def _sessions_frame(sessions, tz_offset_hours):
    rows = []
    for s in _completed(sessions):
        book = getattr(s, "book", None)
        rows.append({
            "end_time": s.end_time,
            "pages": s.pages_read or 0,
            "minutes": s.duration or 0,
            "book_id": s.book_id,
            "title": book.title if book is not None else None,
        })
    df = pd.DataFrame(rows, columns=["end_time", "pages", "minutes", "book_id", "title"])
    if not df.empty:
        local = pd.to_datetime(df["end_time"]) + pd.Timedelta(hours=tz_offset_hours)
        df["day"] = local.dt.normalize()
    return df


def _bucket(day: pd.Series, period: str) -> pd.Series:
    if period == "day":
        return day
    if period == "week":
        return day - pd.to_timedelta(day.dt.weekday, unit="D")
    return day.dt.to_period("M").dt.to_timestamp()


def reading_activity(sessions, period: str = "day", now: Optional[datetime] = None,
                     tz_offset_hours: float = TZ_OFFSET_HOURS, days: Optional[int] = None) -> dict:
    """
    Periodic aggregates over completed sessions.

    Buckets start at the day itself, the Monday of the week, or the first of
    the month. `days` limits the log to the trailing window ending today.
    Alongside the buckets come a weekday pattern and the top books by pages.
    """
    if period not in PERIODS:
        raise ValueError(f"period must be one of {PERIODS}")
    now = now or utcnow()
    df = _sessions_frame(sessions, tz_offset_hours)
    if not df.empty and days:
        cutoff = pd.Timestamp(local_day(now, tz_offset_hours) - timedelta(days=days - 1))
        df = df[df["day"] >= cutoff]
    if df.empty:
        return {"period": period, "buckets": [], "by_weekday": [], "books": []}

    df = df.assign(bucket=_bucket(df["day"], period))
    grouped = (
        df.groupby("bucket")
          .agg(pages=("pages", "sum"), minutes=("minutes", "sum"), sessions=("pages", "size"))
          .sort_index()
    )
    buckets = [
        {"start": ts.date().isoformat(), "pages": int(r.pages),
         "minutes": int(r.minutes), "sessions": int(r.sessions)}
        for ts, r in grouped.iterrows()
    ]

    # average per reading day, not per session
    daily = df.groupby("day").agg(pages=("pages", "sum"), sessions=("pages", "size"))
    daily["weekday"] = daily.index.weekday
    by_wd = daily.groupby("weekday").agg(avg_pages=("pages", "mean"), sessions=("sessions", "sum"))
    by_weekday = [
        {"day": WEEKDAYS[wd], "avg_pages": round(float(r.avg_pages), 1), "sessions": int(r.sessions)}
        for wd, r in by_wd.iterrows()
    ]

    df["title"] = df["title"].fillna("Unspecified")
    per_book = (
        df.groupby(["book_id", "title"])
          .agg(pages=("pages", "sum"), minutes=("minutes", "sum"))
          .reset_index()
          .sort_values(["pages", "minutes"], ascending=False)
          .head(10)
    )
    books = [
        {"book_id": int(r.book_id), "title": r.title, "pages": int(r.pages), "minutes": int(r.minutes)}
        for r in per_book.itertuples()
    ]

    return {"period": period, "buckets": buckets, "by_weekday": by_weekday, "books": books}
