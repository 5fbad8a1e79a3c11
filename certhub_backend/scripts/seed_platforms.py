"""
Create the tables if needed and insert the stock issuing platforms
(Coursera, Udemy, ...) that are not there yet.

    python -m scripts.seed_platforms
"""
from app.core.database import get_engine, get_sessionmaker
from app.models.base import Base
from app.services.platforms import seed_default_platforms
import app.models  # noqa: F401

Base.metadata.create_all(bind=get_engine())

db = get_sessionmaker()()
try:
    created = seed_default_platforms(db)
    print(f"Seeded {len(created)} platforms: {', '.join(p.name for p in created) or '-'}")
finally:
    db.close()
print("Done.")
