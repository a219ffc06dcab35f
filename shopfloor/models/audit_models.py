from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from shopfloor.db.base import Base


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityKey = Column(String(100), nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
