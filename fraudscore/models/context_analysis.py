"""
Context legitimacy assessments produced by the external classifier.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, JSON, Text

from fraudscore.database import Base, utcnow


class ContextAnalysis(Base):
    __tablename__ = "context_analyses"

    id = Column(Integer, primary_key=True, index=True)
    phone_hash = Column(String(128), nullable=False, index=True)

    feedback_content = Column(Text, nullable=False)
    language_detected = Column(String(5), nullable=True)
    business_context = Column(JSON, nullable=True)

    legitimacy_score = Column(Float, nullable=False)   # 0-100, higher = more legitimate
    confidence_score = Column(Float, nullable=False)   # 0-100
    impossible_claims_detected = Column(JSON, nullable=False, default=list)
    suspicious_patterns = Column(JSON, nullable=False, default=list)
    reasoning = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "phone_hash": self.phone_hash,
            "language_detected": self.language_detected,
            "business_context": self.business_context,
            "legitimacy_score": self.legitimacy_score,
            "confidence_score": self.confidence_score,
            "impossible_claims_detected": self.impossible_claims_detected or [],
            "suspicious_patterns": self.suspicious_patterns or [],
            "reasoning": self.reasoning,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
