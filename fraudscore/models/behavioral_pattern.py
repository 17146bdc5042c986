import enum

from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Boolean, Text, Index

from fraudscore.database import Base, utcnow


class PatternType(str, enum.Enum):
    CALL_FREQUENCY = "call_frequency"
    TIME_PATTERN = "time_pattern"
    LOCATION_PATTERN = "location_pattern"
    SIMILARITY_PATTERN = "similarity_pattern"


class BehavioralPattern(Base):
    """A detected behavioral anomaly for a phone hash."""
    __tablename__ = "behavioral_patterns"

    id = Column(Integer, primary_key=True, index=True)
    phone_hash = Column(String(128), nullable=False, index=True)
    pattern_type = Column(String(30), nullable=False)

    risk_score = Column(Float, nullable=False)  # 0-100
    violation_count = Column(Integer, nullable=False, default=1)

    pattern_data = Column(JSON, nullable=False, default=dict)     # evidence for this detection
    detection_rules = Column(JSON, nullable=False, default=list)  # [{"rule_name": ..., "triggered": bool}]

    first_detected = Column(DateTime, default=utcnow, nullable=False)
    last_updated = Column(DateTime, default=utcnow, nullable=False)

    is_resolved = Column(Boolean, default=False, nullable=False)
    resolution_notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_behavioral_patterns_phone_updated", "phone_hash", "last_updated"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "phone_hash": self.phone_hash,
            "pattern_type": self.pattern_type,
            "risk_score": self.risk_score,
            "violation_count": self.violation_count,
            "pattern_data": self.pattern_data or {},
            "detection_rules": self.detection_rules or [],
            "first_detected": self.first_detected.isoformat() if self.first_detected else None,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "is_resolved": self.is_resolved,
            "resolution_notes": self.resolution_notes,
        }
