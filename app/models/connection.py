from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, UniqueConstraint, CheckConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base
import enum
import uuid


class ConnectionStatus(str, enum.Enum):
    """Stored status of a connection row. 'sent'/'received' are viewpoints of PENDING, not stored."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    BLOCKED = "blocked"


class UserConnection(Base):
    """
    One row per unordered pair of users.

    ``user_id`` -> ``connected_user_id`` is the direction of the most recent request,
    ``pair_low``/``pair_high`` hold the same two ids sorted so the unique constraint
    covers both directions.
    """
    __tablename__ = "user_connections"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    connected_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    initiated_by = Column(String, nullable=False)
    pair_low = Column(String, nullable=False)
    pair_high = Column(String, nullable=False)

    status = Column(String(16), nullable=False, default=ConnectionStatus.PENDING.value, index=True)
    blocked_by = Column(String, nullable=True)
    mutual_block = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    blocked_at = Column(DateTime(timezone=True), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id], back_populates="sent_connections")
    connected_user = relationship("User", foreign_keys=[connected_user_id], back_populates="received_connections")

    __table_args__ = (
        UniqueConstraint("pair_low", "pair_high", name="uq_user_connections_pair"),
        CheckConstraint("user_id <> connected_user_id", name="ck_user_connections_not_self"),
        Index("ix_user_connections_target_status", "connected_user_id", "status"),
    )

    def other_user_id(self, user_id: str) -> str:
        return self.connected_user_id if self.user_id == user_id else self.user_id

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_id, self.connected_user_id)

    def __repr__(self):
        return f"<UserConnection id={self.id} {self.user_id}->{self.connected_user_id} status={self.status}>"
