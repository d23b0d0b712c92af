from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from datetime import datetime
from database import Base


class User(Base):
    """
    Registered account. Subscription fields live on the same row but are only
    ever written through SubscriptionLedger.apply_transition.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    subscription_status = Column(String, default="none", nullable=False)
    subscription_expires_at = Column(DateTime, nullable=True)
    external_customer_id = Column(String, nullable=True, index=True)
    subscription_event_at = Column(DateTime, nullable=True)


class Session(Base):
    """
    Bearer session. Rows past expires_at are treated as expired, not deleted.
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

