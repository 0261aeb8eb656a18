"""
EventAttendee: one row per (event, user) membership.

The autoincrement id preserves join order for display.
"""

from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint

from eventhub.db.base import Base, TimestampMixin


class EventAttendee(Base, TimestampMixin):
    __tablename__ = "event_attendees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendee"),
    )

    def __repr__(self) -> str:
        return f"<EventAttendee(event={self.event_id}, user={self.user_id})>"
