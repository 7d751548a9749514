import sys

from config import DEFAULT_USER_ID
from database import Base, engine, SessionLocal
from services.badges import ensure_badge_catalog
from services.etl import import_snapshot

# usage: python -m scripts.seed [snapshot.json] [user_id]
Base.metadata.create_all(bind=engine)
db = SessionLocal()
try:
    print({"badges_added": ensure_badge_catalog(db)})
    if len(sys.argv) > 1:
        with open(sys.argv[1], "rb") as f:
            user_id = sys.argv[2] if len(sys.argv) > 2 else DEFAULT_USER_ID
            print(import_snapshot(f.read(), db, user_id))
finally:
    db.close()
