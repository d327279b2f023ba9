from sqlalchemy import Column, Integer, String, DateTime, Text

from sachetan.core.timeutils import utcnow
from sachetan.db.base import Base


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(128), nullable=True)
    city = Column(String(128), nullable=True)
    pincode = Column(String(16), nullable=True)
    user_type = Column(String(64), nullable=True)
    last_query = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class LeadArtifact(Base):
    """A file a prospect sent outside the custom-solutions assistant."""
    __tablename__ = "lead_artifacts"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(64), nullable=False, index=True)
    media_url = Column(String(1024), nullable=False)
    content_type = Column(String(128), nullable=True)
    stage = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
