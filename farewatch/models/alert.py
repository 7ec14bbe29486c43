from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Boolean
from sqlalchemy.sql import func
from farewatch.database import Base


class AlertRecord(Base):
    """One price-drop alert decision, stored whether or not the send succeeded."""
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    user_email = Column(String(255), nullable=False, index=True)
    alert_type = Column(String(50), nullable=False, default="price_drop")

    fare_class = Column(String(30), nullable=True)
    paid_price = Column(Numeric(10, 2), nullable=False)
    current_price = Column(Numeric(10, 2), nullable=False)
    savings = Column(Numeric(10, 2), nullable=False)
    savings_percent = Column(Numeric(6, 2), nullable=True)
    price_source = Column(String(20), nullable=True)

    sent = Column(Boolean, nullable=False, default=False)
    message_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
