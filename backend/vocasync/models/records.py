from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from ..core.database import Base


class StoredRecord(Base):
    __tablename__ = "records"

    # Full slash-separated path, e.g. "users/google:42/words/hello"
    path = Column(String, primary_key=True)
    parent = Column(String, nullable=False, index=True)
    key = Column(String, nullable=False)

    value_json = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
