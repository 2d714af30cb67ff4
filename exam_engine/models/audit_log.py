# exam_engine/models/audit_log.py
from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from exam_engine.db.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # exam / submission
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    # create / update / delete / schedule / status_change / grade
    action = Column(String(20), nullable=False)
    performed_by = Column(String(64), nullable=False, index=True)

    previous_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
