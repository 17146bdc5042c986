import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, UniqueConstraint

from fraudscore.database import Base, utcnow


class KeywordCategory(str, enum.Enum):
    PROFANITY = "profanity"
    THREATS = "threats"
    NONSENSICAL = "nonsensical"
    IMPOSSIBLE = "impossible"


class RedFlagKeyword(Base):
    """A keyword (and its regex) whose presence in feedback indicates fraud."""
    __tablename__ = "red_flag_keywords"

    id = Column(Integer, primary_key=True, index=True)
    keyword = Column(String(100), nullable=False)
    category = Column(String(20), nullable=False, index=True)
    severity_level = Column(Integer, nullable=False)  # 1-10
    language_code = Column(String(5), nullable=False, default="sv", index=True)
    detection_pattern = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("keyword", "language_code", name="uq_keyword_language"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "keyword": self.keyword,
            "category": self.category,
            "severity_level": self.severity_level,
            "language_code": self.language_code,
            "detection_pattern": self.detection_pattern,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
