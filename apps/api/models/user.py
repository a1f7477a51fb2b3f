"""User model."""

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class User(Base):
    """Telegram user with a prepaid credit balance."""

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),)

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    username = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    language_code = Column(String, nullable=True)
    credits = Column(Integer, nullable=False, default=0)
    referred_by = Column(BigInteger, nullable=True, index=True)
    last_result_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_entries = relationship("CreditLedger", back_populates="user")
    generations = relationship("Generation", back_populates="user")
