from datetime import timedelta

from models import ReadingSession, SessionComment, utcnow


def iso(ts):
    return ts.replace(microsecond=0).isoformat()


def test_health(client):
    assert client.get("/").json() == {"status": "ok"}


def test_book_crud(client, book):
    assert book["current_page"] == 0
    assert book["status"] == "reading"
    assert book["categories"] == ["Science Fiction"]

    r = client.patch(f"/books/{book['id']}", json={"current_page": 40, "categories": ["SF", "Classic"]})
    assert r.status_code == 200
    assert r.json()["current_page"] == 40
    assert r.json()["categories"] == ["SF", "Classic"]

    assert [b["id"] for b in client.get("/books/current").json()] == [book["id"]]
    assert client.get("/books", params={"status": "paused"}).json() == []

    assert client.delete(f"/books/{book['id']}").json() == {"success": True}
    assert client.get(f"/books/{book['id']}").status_code == 404


def test_search_books_by_title_or_author(client, book):
    client.post("/books", json={"title": "Emma", "author": "Jane Austen", "total_pages": 10,
                                "status": "paused"})
    def titles(r):
        return sorted(b["title"] for b in r.json())

    assert titles(client.get("/books", params={"q": "dUn"})) == ["Dune"]
    assert titles(client.get("/books", params={"q": "austen"})) == ["Emma"]
    assert titles(client.get("/books", params={"q": "e"})) == ["Dune", "Emma"]
    assert titles(client.get("/books", params={"q": "e", "status": "paused"})) == ["Emma"]
    assert titles(client.get("/books/current", params={"q": "austen"})) == []
    assert titles(client.get("/books/current", params={"q": "herbert"})) == ["Dune"]


def test_patch_can_clear_optional_fields(client, book):
    r = client.patch(f"/books/{book['id']}", json={"isbn": "0441013597", "cover_url": "http://x/c.jpg"})
    assert r.json()["isbn"] == "0441013597"
    r = client.patch(f"/books/{book['id']}", json={"isbn": None, "cover_url": None, "categories": None})
    assert r.status_code == 200
    assert (r.json()["isbn"], r.json()["cover_url"], r.json()["categories"]) == (None, None, [])
    # required columns ignore an explicit null
    r = client.patch(f"/books/{book['id']}", json={"title": None})
    assert r.json()["title"] == "Dune"


def test_deleting_book_removes_sessions_and_comments(client, db, book):
    s = client.post("/sessions/start", json={"book_id": book["id"]}).json()
    client.post(f"/sessions/{s['id']}/comments", json={"text": "great opening"})
    assert db.query(SessionComment).count() == 1

    assert client.delete(f"/books/{book['id']}").status_code == 200
    db.expire_all()
    assert db.query(ReadingSession).filter_by(book_id=book["id"]).count() == 0
    assert db.query(SessionComment).count() == 0


def test_deletes_recheck_badges(client, book, monkeypatch):
    import main

    checked = []
    monkeypatch.setattr(main.badges, "check_and_award", lambda db, user_id: checked.append(user_id) or [])
    s = client.post("/sessions/start", json={"book_id": book["id"]}).json()
    client.delete(f"/sessions/{s['id']}")
    client.delete(f"/books/{book['id']}")
    assert checked == ["me", "me"]


def test_current_page_cannot_exceed_total(client, book):
    r = client.patch(f"/books/{book['id']}", json={"current_page": 101})
    assert r.status_code == 422
    r = client.post("/books", json={"title": "Emma", "author": "Jane Austen",
                                    "total_pages": 10, "current_page": 11})
    assert r.status_code == 422


def test_reaching_last_page_completes_book(client, book):
    r = client.patch(f"/books/{book['id']}", json={"current_page": 100})
    assert r.json()["status"] == "completed"


def test_duplicate_book_conflict(client, book):
    r = client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "total_pages": 5})
    assert r.status_code == 409


def test_books_are_scoped_per_user(client, book):
    other = {"X-User-Id": "someone-else"}
    assert client.get("/books", headers=other).json() == []
    assert client.get(f"/books/{book['id']}", headers=other).status_code == 404


def test_session_lifecycle(client, book):
    start = utcnow() - timedelta(minutes=45)
    r = client.post("/sessions/start", json={"book_id": book["id"], "start_time": iso(start)})
    assert r.status_code == 201
    session = r.json()
    assert session["end_time"] is None
    assert client.get("/sessions/current").json()["id"] == session["id"]

    # one open session per book
    r = client.post("/sessions/start", json={"book_id": book["id"]})
    assert r.status_code == 409

    r = client.post(f"/sessions/{session['id']}/end",
                    json={"pages_read": 30, "reflection": "Spice!", "mood": "excited"})
    assert r.status_code == 200
    body = r.json()
    assert body["session"]["pages_read"] == 30
    assert 44 <= body["session"]["duration"] <= 46
    earned = {b["badge_id"] for b in body["new_badges"]}
    assert "first_chapter" in earned

    updated = client.get(f"/books/{book['id']}").json()
    assert updated["current_page"] == 30
    assert updated["last_read_at"] is not None
    assert client.get("/sessions/current").json() is None

    # already ended
    r = client.post(f"/sessions/{session['id']}/end", json={"pages_read": 1})
    assert r.status_code == 409


def test_ending_past_last_page_clamps_and_completes(client, book):
    s = client.post("/sessions/start", json={"book_id": book["id"]}).json()
    client.post(f"/sessions/{s['id']}/end", json={"pages_read": 150})
    updated = client.get(f"/books/{book['id']}").json()
    assert updated["current_page"] == 100
    assert updated["status"] == "completed"


def test_end_before_start_rejected(client, book):
    s = client.post("/sessions/start", json={"book_id": book["id"]}).json()
    past = utcnow() - timedelta(days=1)
    r = client.post(f"/sessions/{s['id']}/end", json={"pages_read": 1, "end_time": iso(past)})
    assert r.status_code == 422


def test_journal_create_list_delete(client, book):
    now = utcnow()
    for days_ago in (2, 0, 1):
        end = now - timedelta(days=days_ago)
        r = client.post("/sessions", json={
            "book_id": book["id"],
            "start_time": iso(end - timedelta(minutes=20)),
            "end_time": iso(end),
            "pages_read": 10,
        })
        assert r.status_code == 200
        assert r.json()["session"]["duration"] == 20

    listed = client.get("/sessions", params={"book_id": book["id"]}).json()
    ends = [s["end_time"] for s in listed]
    assert ends == sorted(ends, reverse=True)
    assert len(client.get("/sessions", params={"limit": 2}).json()) == 2

    # upsert by id
    first = listed[0]
    r = client.post("/sessions", json={**{k: first[k] for k in ("id", "book_id", "start_time", "end_time")},
                                       "pages_read": 99})
    assert r.json()["session"]["pages_read"] == 99
    assert len(client.get("/sessions").json()) == 3

    assert client.delete(f"/sessions/{first['id']}").json() == {"success": True}
    assert len(client.get("/sessions").json()) == 2
    assert client.delete(f"/sessions/{first['id']}").status_code == 404


def test_journal_open_session_conflict(client, book):
    open_one = client.post("/sessions/start", json={"book_id": book["id"]}).json()
    start = iso(utcnow() - timedelta(hours=2))
    r = client.post("/sessions", json={"book_id": book["id"], "start_time": start})
    assert r.status_code == 409

    # a finished entry for the same book is fine
    r = client.post("/sessions", json={"book_id": book["id"], "start_time": start,
                                       "end_time": iso(utcnow() - timedelta(hours=1))})
    assert r.status_code == 200
    # re-posting the open session itself is an update, not a second open one
    r = client.post("/sessions", json={"id": open_one["id"], "book_id": book["id"],
                                       "start_time": open_one["start_time"]})
    assert r.status_code == 200


def test_comments(client, book):
    s = client.post("/sessions/start", json={"book_id": book["id"]}).json()
    for text in ("first", "second"):
        assert client.post(f"/sessions/{s['id']}/comments", json={"text": text}).status_code == 201
    comments = client.get(f"/sessions/{s['id']}/comments").json()
    assert [c["text"] for c in comments] == ["first", "second"]
    assert client.get("/sessions/999/comments").status_code == 404


def test_stats_overview(client, book):
    now = utcnow()
    for days_ago in (0, 1, 2, 5):
        end = now - timedelta(days=days_ago)
        client.post("/sessions", json={"book_id": book["id"], "start_time": iso(end - timedelta(minutes=10)),
                                       "end_time": iso(end), "pages_read": 5})
    client.post("/sessions/start", json={"book_id": book["id"]})

    out = client.get("/stats/overview").json()
    assert out["total_pages_read"] == 20
    assert out["total_minutes_read"] == 40
    assert out["current_streak"] == 3
    assert out["longest_streak"] == 3
    assert out["sessions_this_week"] == 4
    assert out["total_books_read"] == 0


def test_activity_requires_premium(client, book):
    r = client.get("/stats/activity")
    assert r.status_code == 402
    assert "Advanced Analytics" in r.json()["detail"]

    client.put("/subscription", json={"is_premium": True, "plan": "yearly", "will_renew": True})
    client.post("/sessions", json={"book_id": book["id"], "start_time": iso(utcnow() - timedelta(minutes=5)),
                                   "end_time": iso(utcnow()), "pages_read": 12})
    out = client.get("/stats/activity", params={"period": "week"}).json()
    assert out["period"] == "week"
    assert sum(b["pages"] for b in out["buckets"]) == 12
    assert client.get("/stats/activity", params={"period": "year"}).status_code == 422


def test_subscription_expiry(client):
    assert client.get("/subscription").json()["is_premium"] is False
    past = utcnow() - timedelta(days=1)
    out = client.put("/subscription", json={"is_premium": True, "plan": "monthly",
                                            "expires_at": iso(past)}).json()
    assert out["is_premium"] is False
    assert out["plan"] == "free"

    future = utcnow() + timedelta(days=30)
    out = client.put("/subscription", json={"is_premium": True, "plan": "monthly",
                                            "expires_at": iso(future), "will_renew": True}).json()
    assert out == {"is_premium": True, "plan": "monthly",
                   "expires_at": iso(future), "will_renew": True}


def test_share_themes(client):
    themes = client.get("/share/themes").json()
    assert len(themes) == 13
    assert sum(t["available"] for t in themes) == 3
    assert client.post("/share/theme", json={"theme_id": "minimal-dark"}).status_code == 200
    assert client.post("/share/theme", json={"theme_id": "golden"}).status_code == 402
    assert client.post("/share/theme", json={"theme_id": "nope"}).status_code == 404

    client.put("/subscription", json={"is_premium": True, "plan": "monthly"})
    assert client.post("/share/theme", json={"theme_id": "golden"}).status_code == 200
    assert all(f["unlocked"] for f in client.get("/premium/features").json())


def test_badges_endpoints(client):
    defs = client.get("/badges").json()
    assert defs[0]["rarity"] == "godtier"

    r = client.post("/badges/award", json={"badge_id": "founding_reader"})
    assert r.status_code == 201
    assert client.post("/badges/award", json={"badge_id": "founding_reader"}).status_code == 409
    assert client.get("/badges/founding_reader/earned").json()["earned"] is True
    assert client.get("/badges/streak_100/earned").json()["earned"] is False

    mine = client.get("/badges/me").json()
    assert [b["badge_id"] for b in mine["earned"]] == ["founding_reader"]
    assert len(mine["by_rarity"]["epic"]) == 1
    assert mine["top"][0]["badge"]["name"] == "Founding Reader"


def test_create_badge_definition_and_evaluate(client, book):
    r = client.post("/badges", json={
        "name": "Dune Fan", "description": "Finish a Frank Herbert book", "rarity": "rare",
        "category": "author", "criteria": {"type": "author", "value": "Frank Herbert"},
    })
    assert r.status_code == 201
    assert r.json()["id"] == "badge_dune_fan"
    assert client.post("/badges", json={"id": "badge_dune_fan", "name": "x", "description": "",
                                        "rarity": "common", "category": "special"}).status_code == 409

    assert client.post("/badges/evaluate").json()["new_badges"] == []
    client.patch(f"/books/{book['id']}", json={"current_page": 100})
    earned = client.get("/badges/me").json()["earned"]
    assert {"badge_dune_fan", "first_finish"} <= {b["badge_id"] for b in earned}


def test_profile(client):
    p = client.get("/profile").json()
    assert p["id"] == "me"
    assert p["name"] == "Reading Enthusiast"
    r = client.patch("/profile", json={"name": "Ada", "bio": "Reads a lot", "profile_image": "a.png",
                                       "gender": "prefer-not-to-say"})
    assert r.json()["name"] == "Ada"
    assert r.json()["updated_at"] >= p["updated_at"]
    assert client.patch("/profile", json={"gender": "robot"}).status_code == 422
    assert client.get("/badges/introductions/earned").json()["earned"] is True


def test_settings(client):
    s = client.get("/settings").json()
    assert s["notifications"]["reminder_time"] == "20:00"
    assert s["reading"]["default_goal"] == 30

    s = client.patch("/settings", json={"reading": {"default_goal": 45},
                                        "general": {"time_format": "24h"}}).json()
    assert s["reading"] == {"default_goal": 45, "auto_tracking": False,
                            "show_page_count": True, "show_progress_percentage": True}
    assert s["general"]["time_format"] == "24h"
    assert s["general"]["language"] == "en"
    assert client.get("/settings").json()["reading"]["default_goal"] == 45

    assert client.patch("/settings", json={"general": {"time_format": "36h"}}).status_code == 422
    assert client.post("/settings/reset").json()["reading"]["default_goal"] == 30
    assert client.get("/settings").json()["general"]["time_format"] == "12h"
