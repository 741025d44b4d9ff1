from sqlalchemy import Column, String, DateTime, Boolean, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base
import uuid

class User(Base):
    """User model for registered riders. Soft-disabled through is_active, never hard-deleted."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))  # Firebase UID when signed up through Firebase
    email = Column(String, unique=True, index=True, nullable=True)
    phone_number = Column(String(15), unique=True, index=True, nullable=True)
    first_name = Column(String(50), nullable=False, default="")
    last_name = Column(String(50), nullable=False, default="")
    display_name = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    profile_picture = Column(Text, nullable=True)

    is_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    sent_connections = relationship(
        "UserConnection", foreign_keys="UserConnection.user_id", back_populates="user", passive_deletes=True
    )
    received_connections = relationship(
        "UserConnection", foreign_keys="UserConnection.connected_user_id", back_populates="connected_user", passive_deletes=True
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self):
        return f"<User id={self.id} name={self.full_name!r} verified={self.is_verified} active={self.is_active}>"
