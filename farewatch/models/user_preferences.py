from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from farewatch.database import Base


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String(255), nullable=False, unique=True, index=True)

    default_check_interval = Column(Integer, nullable=True)  # minutes, clamped on use
    price_drop_alerts = Column(Boolean, default=True)        # False opts out of alert emails

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @classmethod
    def for_user(cls, db, user_email: str):
        return db.query(cls).filter(cls.user_email == user_email).first()

