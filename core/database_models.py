import uuid
from sqlalchemy import (
    Column, String, DateTime, Text, Boolean, Index
)

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRecord(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(String(255), nullable=False)  # hashed, never returned on read paths
    role = Column(String(20), nullable=False, default='user')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class NewsletterRecord(Base):
    __tablename__ = 'newsletters'

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    excerpt = Column(String(200), nullable=False)
    published = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime)
    slug = Column(String(255), unique=True)  # NULLs do not collide
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('ix_newsletters_published', 'published'),
        Index('ix_newsletters_published_at', 'published_at'),
    )


class SubscriptionRecord(Base):
    __tablename__ = 'subscriptions'

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    subscribed_at = Column(DateTime, nullable=False)
    unsubscribed_at = Column(DateTime)
    source = Column(String(100), nullable=False, default='website')
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('ix_subscriptions_is_active', 'is_active'),
    )
