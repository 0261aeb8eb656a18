"""
Event model.

Key design decisions:
- Attendees live in their own table (see attendee.py) so membership is a row,
  not an array field; the (event_id, user_id) unique constraint backs the
  no-duplicate invariant at the DB level
- `version` column enables optimistic locking for concurrent join/leave
- Index on `date` for the listing query (ordered by date)
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index

from eventhub.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(255), nullable=False)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Optimistic locking version counter, bumped on every attendee change
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_events_date", "date"),
        # Duplicate-check on create: same creator, same name, same date
        Index("ix_events_creator_name_date", "creator_id", "name", "date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name={self.name}, version={self.version})>"
