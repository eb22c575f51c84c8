# SQLAlchemy模型定义
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Text
from .connection import Base


class PromotionDraftRecord(Base):
    """晋级决定草稿模型"""
    __tablename__ = "promotion_drafts"

    storage_key = Column(String(100), primary_key=True, index=True)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
