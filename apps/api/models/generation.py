"""Generation history model."""

import uuid

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


GENERATION_IN_PROGRESS = "IN_PROGRESS"
GENERATION_COMPLETED = "COMPLETED"
GENERATION_FAILED = "FAILED"


class Generation(Base):
    """One submitted Mystic task and its outcome."""

    __tablename__ = "generations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    aspect_ratio = Column(String, nullable=False)
    task_id = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default=GENERATION_IN_PROGRESS, index=True)
    result_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="generations")
