from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from ..database import Base


class NamedSession(Base):
    """A named JSON document saved by one user.

    ``session_data`` holds the serialized payload; a user has at most one
    record per ``session_name``.
    """

    __tablename__ = "user_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "session_name", name="uq_user_sessions_user_id_session_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )
    session_name = Column(String, nullable=False)
    session_data = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
