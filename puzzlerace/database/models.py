from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from puzzlerace.data_models.roster import RoomMembershipRecord

Base = declarative_base()

class RoomMembership(Base):
    __tablename__ = 'room_memberships'

    # Insertion order of this id is the "my rooms" order
    id = Column(Integer, primary_key=True)
    room_id = Column(String(64), nullable=False, unique=True, index=True)
    is_admin = Column(Boolean, nullable=False, default=False)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def to_record(self) -> RoomMembershipRecord:
        return RoomMembershipRecord(room_id=self.room_id, is_admin=bool(self.is_admin))

    def __repr__(self):
        return f"<RoomMembership(room_id='{self.room_id}', is_admin={self.is_admin})>"

class Preference(Base):
    __tablename__ = 'preferences'

    id = Column(Integer, primary_key=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(Text, nullable=False)  # JSON-encoded

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Preference(key='{self.key}')>"
