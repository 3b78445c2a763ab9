"""
SQLAlchemy ORM Models
"""

from datetime import datetime

from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()

class Subscription(Base):
    __tablename__ = 'subscriptions'

    subscription_id = Column(Integer, primary_key=True)
    user_id = Column(BigInteger, nullable=False, index=True)  # Telegram chat id
    item_name = Column(String, nullable=False)
    model = Column(String)
    background = Column(String)
    pattern = Column(String)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    history = relationship("MonitoringHistory", back_populates="subscription", cascade="all, delete-orphan")

class MonitoringHistory(Base):
    __tablename__ = 'monitoring_history'

    history_id = Column(Integer, primary_key=True)
    subscription_id = Column(
        Integer,
        ForeignKey('subscriptions.subscription_id', ondelete='CASCADE'),
        nullable=False,
    )
    count = Column(Integer, nullable=False)
    checked_at = Column(DateTime, default=datetime.now, nullable=False)
    has_changed = Column(Boolean, default=False, nullable=False)

    # Relationships
    subscription = relationship("Subscription", back_populates="history")

    __table_args__ = (
        Index('idx_monitoring_history_subscription', 'subscription_id', 'checked_at'),
    )
