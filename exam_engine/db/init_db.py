# exam_engine/db/init_db.py
from exam_engine.db.base import Base
from exam_engine.db.session import engine
from exam_engine import models  # noqa: F401  (registers tables on Base.metadata)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
