"""Merchant accounts and their API sessions"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.models.base import Base


class Merchant(Base):
    """
    Account holder whose store and analytics property are analyzed.

    Owns at most one commerce connection and one traffic connection.
    """
    __tablename__ = "merchants"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())

    commerce_connection = relationship(
        "CommerceConnection", back_populates="merchant", uselist=False
    )
    traffic_connection = relationship(
        "TrafficConnection", back_populates="merchant", uselist=False
    )


class MerchantSession(Base):
    __tablename__ = "merchant_sessions"

    id = Column(Integer, primary_key=True, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(64), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
