"""
Usage/audit log model.
"""
from sqlalchemy import Column, String, Text, DateTime, Integer, Float

from app.models.base import Base, utcnow


class ApiUsageLog(Base):
    """One usage or audit record (api_type names the operation)."""
    __tablename__ = 'api_usage_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)
    project_id = Column(Integer, nullable=True, index=True)
    api_type = Column(String(100), nullable=False, index=True)
    provider = Column(String(50), nullable=False)
    model = Column(String(100), nullable=True)
    estimated_cost_usd = Column(Float, nullable=False, default=0)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
