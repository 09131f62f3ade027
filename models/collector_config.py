"""
CollectorConfig ORM model: the provider chain for one answer engine.

providers is an ordered list, lowest priority number first:
    [{"name": "brightdata_chatgpt", "priority": 1, "enabled": true,
      "timeout_seconds": 10, "fallback_on_failure": true, "options": {}}]

Operators replace the whole row; version increments on every write so a
snapshot taken by an in-flight dispatch can be told apart from the current one.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, utcnow


class CollectorConfig(Base):
    __tablename__ = "collector_configs"

    engine: Mapped[str] = mapped_column(String(40), primary_key=True)
    providers: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    max_concurrency: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<CollectorConfig {self.engine} v{self.version}>"
