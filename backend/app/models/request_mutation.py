"""RequestMutation ORM model — append-only ledger of lifecycle transitions."""
import uuid
from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from app.database import Base


class RequestMutation(Base):
    __tablename__ = "request_mutations"

    mutation_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(36), nullable=False, index=True)
    request_type = Column(String(20), nullable=False)  # one-to-one | group
    actor_id = Column(String(36), nullable=True)  # None for system events
    action = Column(String(50), nullable=False)
    before_status = Column(String(30), nullable=True)
    after_status = Column(String(30), nullable=True)
    detail = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
