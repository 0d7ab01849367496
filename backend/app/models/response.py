"""Response and HiddenRequest ORM models."""
import uuid
import enum
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from app.database import Base


class ResponseStatus(str, enum.Enum):
    accepted = "accepted"
    declined = "declined"
    not_interested = "not_interested"


class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (UniqueConstraint("request_id", "responder_id", name="uq_response_request_responder"),)

    response_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(36), ForeignKey("requests.request_id"), nullable=False, index=True)
    responder_id = Column(String(36), nullable=False, index=True)
    status = Column(SAEnum(ResponseStatus), nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class HiddenRequest(Base):
    """A request a user marked not_interested; excluded from their listings."""

    __tablename__ = "hidden_requests"

    user_id = Column(String(36), primary_key=True)
    request_id = Column(String(36), primary_key=True)
    hidden_at = Column(DateTime(timezone=True), server_default=func.now())
