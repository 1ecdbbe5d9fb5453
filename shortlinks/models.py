from typing import Optional
from sqlalchemy import String, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from .database import Base

# Timestamps are RFC3339 text in UTC (see utils.utc_now_rfc3339); lexical
# order is chronological order and the first 10 characters are the date.

class Link(Base):
    __tablename__ = "urls"

    code: Mapped[str] = mapped_column(String(32), primary_key=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    expires_at: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_ip: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<Link {self.code} -> {self.target_url}>"

class Click(Base):
    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    at: Mapped[str] = mapped_column(String, nullable=False)
    ip: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    referer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_clicks_code_at", "code", "at"),
        Index("idx_clicks_code_ip", "code", "ip"),
    )
