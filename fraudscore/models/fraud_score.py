from sqlalchemy import Column, Integer, String, Float, DateTime, Index

from fraudscore.database import Base, utcnow


class FraudScore(Base):
    """One composite assessment of a phone hash. A new row per assessment."""
    __tablename__ = "fraud_scores"

    id = Column(Integer, primary_key=True, index=True)
    phone_hash = Column(String(128), nullable=False, index=True)  # opaque, never a raw number

    # Components (max points)
    context_score = Column(Float, nullable=False, default=0.0)      # 0-40
    keyword_score = Column(Float, nullable=False, default=0.0)      # 0-20
    behavioral_score = Column(Float, nullable=False, default=0.0)   # 0-30
    transaction_score = Column(Float, nullable=False, default=0.0)  # 0-10

    # Derived, always recomputed from the components
    composite_score = Column(Float, nullable=False)
    risk_level = Column(String(10), nullable=False)  # low | medium | high | critical
    fraud_probability = Column(Float, nullable=False)
    confidence_level = Column(Integer, nullable=False)

    analysis_version = Column(String(20), nullable=False, default="1.0.0")
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_fraud_scores_phone_created", "phone_hash", "created_at"),
    )

    @property
    def components(self):
        return {
            "context": self.context_score or 0.0,
            "keyword": self.keyword_score or 0.0,
            "behavioral": self.behavioral_score or 0.0,
            "transaction": self.transaction_score or 0.0,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "phone_hash": self.phone_hash,
            "context_score": self.context_score,
            "keyword_score": self.keyword_score,
            "behavioral_score": self.behavioral_score,
            "transaction_score": self.transaction_score,
            "composite_score": self.composite_score,
            "risk_level": self.risk_level,
            "fraud_probability": self.fraud_probability,
            "confidence_level": self.confidence_level,
            "analysis_version": self.analysis_version,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
