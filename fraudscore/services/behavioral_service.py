"""
Behavioral pattern store.
Persists detector output per phone hash, merges repeat detections,
and turns unresolved patterns into the 0-30 behavioral component.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from fraudscore.config import settings
from fraudscore.database import commit_or_raise, utcnow
from fraudscore.errors import FraudValidationError
from fraudscore.models.behavioral_pattern import BehavioralPattern, PatternType
from fraudscore.services.pattern_detection import (
    CallEvent,
    MAX_POINTS,
    PatternDetection,
    PatternDetector,
    composite_points,
)
from fraudscore.utils.logging_config import StructuredLogger, metrics
from fraudscore.utils.risk_levels import (
    RiskLevel,
    overall_pattern_risk,
    pattern_recommendation,
    pattern_risk_bucket,
)
from fraudscore.utils.time_window import parse_time_window, window_start

logger = StructuredLogger(__name__)

PATTERN_TYPES = [t.value for t in PatternType]


def _check_pattern_type(pattern_type: str) -> str:
    value = pattern_type.value if isinstance(pattern_type, PatternType) else pattern_type
    if value not in PATTERN_TYPES:
        raise FraudValidationError(f"Invalid pattern type: {pattern_type}")
    return value


def _check_risk_score(risk_score: float):
    if not 0 <= risk_score <= 100:
        raise FraudValidationError("Risk score must be between 0 and 100")


def _merge_rules(existing: List[Dict[str, Any]], new: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """A rule stays triggered once any detection triggered it."""
    merged: Dict[str, bool] = {}
    for rule in (existing or []) + (new or []):
        name = rule["rule_name"]
        merged[name] = merged.get(name, False) or bool(rule.get("triggered"))
    return [{"rule_name": name, "triggered": triggered} for name, triggered in merged.items()]


class BehavioralPatternService:
    """Behavioral pattern store bound to a database session."""

    def __init__(self, db: Session, detector: Optional[PatternDetector] = None):
        self.db = db
        self.detector = detector or PatternDetector()

    # ==================== WRITES ====================

    def create_pattern(
        self,
        phone_hash: str,
        pattern_type: str,
        risk_score: float,
        violation_count: int = 1,
        pattern_data: Optional[Dict[str, Any]] = None,
        detection_rules: Optional[List[Dict[str, Any]]] = None,
    ) -> BehavioralPattern:
        pattern_type = _check_pattern_type(pattern_type)
        _check_risk_score(risk_score)
        if violation_count < 1:
            raise FraudValidationError("Violation count must be at least 1")

        now = utcnow()
        pattern = BehavioralPattern(
            phone_hash=phone_hash,
            pattern_type=pattern_type,
            risk_score=risk_score,
            violation_count=violation_count,
            pattern_data=pattern_data or {},
            detection_rules=detection_rules or [],
            first_detected=now,
            last_updated=now,
            is_resolved=False,
        )
        self.db.add(pattern)
        commit_or_raise(self.db, "create behavioral pattern")
        self.db.refresh(pattern)

        metrics.increment(f"patterns.created.{pattern_type}")
        logger.info(
            "Behavioral pattern created",
            pattern_id=pattern.id,
            pattern_type=pattern_type,
            risk_score=risk_score,
        )
        return pattern

    def update_pattern(
        self,
        pattern_id: int,
        risk_score: Optional[float] = None,
        violation_count: Optional[int] = None,
        pattern_data: Optional[Dict[str, Any]] = None,
        detection_rules: Optional[List[Dict[str, Any]]] = None,
        is_resolved: Optional[bool] = None,
        resolution_notes: Optional[str] = None,
    ) -> Optional[BehavioralPattern]:
        """
        Amend a pattern. `pattern_data` is shallow-merged over the stored
        evidence (new keys win); violation_count can only grow.
        """
        if risk_score is not None:
            _check_risk_score(risk_score)

        pattern = self.get_by_id(pattern_id)
        if pattern is None:
            return None

        if violation_count is not None:
            if violation_count < pattern.violation_count:
                raise FraudValidationError(
                    f"Violation count cannot decrease ({pattern.violation_count} -> {violation_count})"
                )
            pattern.violation_count = violation_count
        if risk_score is not None:
            pattern.risk_score = risk_score
        if pattern_data:
            merged = dict(pattern.pattern_data or {})
            merged.update(pattern_data)
            pattern.pattern_data = merged
        if detection_rules is not None:
            pattern.detection_rules = detection_rules
        if is_resolved is not None:
            pattern.is_resolved = is_resolved
        if resolution_notes:
            pattern.resolution_notes = resolution_notes
        pattern.last_updated = utcnow()

        commit_or_raise(self.db, "update behavioral pattern")
        self.db.refresh(pattern)
        return pattern

    def record_detection(self, phone_hash: str, detection: PatternDetection) -> BehavioralPattern:
        """
        Store a detector result. An unresolved pattern of the same type is
        merged (violations added, higher risk kept); otherwise a new one is created.
        """
        pattern_type = _check_pattern_type(detection.pattern_type)
        new_violations = max(1, len(detection.violations))

        existing = (
            self.db.query(BehavioralPattern)
            .filter(
                BehavioralPattern.phone_hash == phone_hash,
                BehavioralPattern.pattern_type == pattern_type,
                BehavioralPattern.is_resolved.is_(False),
            )
            .order_by(BehavioralPattern.last_updated.desc(), BehavioralPattern.id.desc())
            .first()
        )

        if existing is None:
            return self.create_pattern(
                phone_hash=phone_hash,
                pattern_type=pattern_type,
                risk_score=detection.risk_score,
                violation_count=new_violations,
                pattern_data=detection.to_pattern_data(),
                detection_rules=detection.detection_rules,
            )

        logger.debug("Merging repeat detection", pattern_id=existing.id, pattern_type=pattern_type)
        return self.update_pattern(
            existing.id,
            risk_score=max(existing.risk_score, detection.risk_score),
            violation_count=existing.violation_count + new_violations,
            pattern_data=detection.to_pattern_data(),
            detection_rules=_merge_rules(existing.detection_rules, detection.detection_rules),
        )

    def analyze_calls(self, phone_hash: str, calls: List[CallEvent]) -> List[BehavioralPattern]:
        """Run every detector over the call history and record what fired."""
        detections = self.detector.detect_all(calls)
        return [self.record_detection(phone_hash, d) for d in detections]

    def resolve_pattern(self, pattern_id: int, resolution_notes: str) -> Optional[BehavioralPattern]:
        if not resolution_notes or not resolution_notes.strip():
            raise FraudValidationError("Resolution notes are required")

        pattern = self.update_pattern(
            pattern_id,
            is_resolved=True,
            resolution_notes=resolution_notes.strip(),
        )
        if pattern is not None:
            logger.info("Behavioral pattern resolved", pattern_id=pattern_id)
        return pattern

    def delete_old_resolved(self, days_old: Optional[int] = None) -> int:
        """Purge resolved patterns last touched more than `days_old` days ago."""
        days_old = days_old if days_old is not None else settings.pattern_retention_days
        cutoff = utcnow() - timedelta(days=days_old)
        deleted = (
            self.db.query(BehavioralPattern)
            .filter(
                BehavioralPattern.is_resolved.is_(True),
                BehavioralPattern.last_updated < cutoff,
            )
            .delete(synchronize_session=False)
        )
        commit_or_raise(self.db, "delete old resolved patterns")
        logger.info("Old resolved patterns purged", deleted=deleted, days_old=days_old)
        return deleted

    # ==================== READS ====================

    def get_by_id(self, pattern_id: int) -> Optional[BehavioralPattern]:
        return self.db.query(BehavioralPattern).filter(BehavioralPattern.id == pattern_id).first()

    def get_patterns(
        self,
        phone_hash: str,
        pattern_types: Optional[List[str]] = None,
        time_window: Optional[str] = None,
        include_resolved: bool = False,
    ) -> List[BehavioralPattern]:
        """Patterns for a phone hash, newest first by last_updated."""
        query = self.db.query(BehavioralPattern).filter(BehavioralPattern.phone_hash == phone_hash)
        if pattern_types:
            query = query.filter(
                BehavioralPattern.pattern_type.in_([_check_pattern_type(t) for t in pattern_types])
            )
        if time_window:
            query = query.filter(BehavioralPattern.last_updated >= window_start(time_window))
        if not include_resolved:
            query = query.filter(BehavioralPattern.is_resolved.is_(False))
        return query.order_by(BehavioralPattern.last_updated.desc(), BehavioralPattern.id.desc()).all()

    def get_by_risk_level(
        self,
        min_risk_score: float,
        max_risk_score: Optional[float] = None,
        pattern_types: Optional[List[str]] = None,
        limit: int = 50,
        offset: int = 0,
        include_resolved: bool = False,
    ) -> Tuple[List[BehavioralPattern], int]:
        """Returns (page of patterns ordered by risk desc, total matching count)."""
        query = self.db.query(BehavioralPattern).filter(BehavioralPattern.risk_score >= min_risk_score)
        if max_risk_score is not None:
            query = query.filter(BehavioralPattern.risk_score <= max_risk_score)
        if pattern_types:
            query = query.filter(
                BehavioralPattern.pattern_type.in_([_check_pattern_type(t) for t in pattern_types])
            )
        if not include_resolved:
            query = query.filter(BehavioralPattern.is_resolved.is_(False))

        total = query.count()
        patterns = (
            query.order_by(BehavioralPattern.risk_score.desc(), BehavioralPattern.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return patterns, total

    def get_critical_patterns(
        self,
        risk_threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[BehavioralPattern]:
        threshold = risk_threshold if risk_threshold is not None else settings.critical_pattern_threshold
        query = (
            self.db.query(BehavioralPattern)
            .filter(
                BehavioralPattern.risk_score >= threshold,
                BehavioralPattern.is_resolved.is_(False),
            )
            .order_by(BehavioralPattern.risk_score.desc())
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_bulk_patterns(
        self,
        phone_hashes: List[str],
        include_resolved: bool = False,
        time_window: Optional[str] = None,
    ) -> Dict[str, List[BehavioralPattern]]:
        result: Dict[str, List[BehavioralPattern]] = {h: [] for h in phone_hashes}
        if not phone_hashes:
            return result

        query = self.db.query(BehavioralPattern).filter(BehavioralPattern.phone_hash.in_(phone_hashes))
        if not include_resolved:
            query = query.filter(BehavioralPattern.is_resolved.is_(False))
        if time_window:
            query = query.filter(BehavioralPattern.last_updated >= window_start(time_window))

        for pattern in query.order_by(BehavioralPattern.last_updated.desc(), BehavioralPattern.id.desc()):
            result[pattern.phone_hash].append(pattern)
        return result

    def get_statistics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        pattern_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        query = self.db.query(BehavioralPattern)
        if start_date:
            query = query.filter(BehavioralPattern.first_detected >= start_date)
        if end_date:
            query = query.filter(BehavioralPattern.first_detected <= end_date)
        if pattern_type:
            query = query.filter(BehavioralPattern.pattern_type == _check_pattern_type(pattern_type))
        rows = query.all()

        type_distribution = {t: 0 for t in PATTERN_TYPES}
        risk_distribution = {level.value: 0 for level in RiskLevel}
        factors = Counter()
        for row in rows:
            type_distribution[row.pattern_type] = type_distribution.get(row.pattern_type, 0) + 1
            risk_distribution[pattern_risk_bucket(row.risk_score)] += 1
            for rule in row.detection_rules or []:
                if rule.get("triggered"):
                    factors[rule["rule_name"]] += 1

        total = len(rows)
        unresolved = sum(1 for r in rows if not r.is_resolved)
        return {
            "total_patterns": total,
            "unresolved_patterns": unresolved,
            "pattern_type_distribution": type_distribution,
            "risk_level_distribution": risk_distribution,
            "average_risk_score": round(sum(r.risk_score for r in rows) / total, 2) if total else 0.0,
            "average_violation_count": round(sum(r.violation_count for r in rows) / total, 2) if total else 0.0,
            "resolution_rate": round((total - unresolved) / total * 100, 2) if total else 0.0,
            "top_risk_factors": [
                {"factor": name, "count": count} for name, count in factors.most_common(10)
            ],
        }

    # ==================== SCORING ====================

    def calculate_behavioral_score(self, phone_hash: str) -> float:
        """Behavioral component (0-30) from the phone hash's unresolved patterns."""
        patterns = self.get_patterns(phone_hash)
        points = [p.risk_score / 100 * MAX_POINTS for p in patterns]
        return composite_points(points)

    def generate_response(
        self,
        phone_hash: str,
        patterns: List[BehavioralPattern],
        time_window: str = "24h",
    ) -> Dict[str, Any]:
        parse_time_window(time_window)
        level = overall_pattern_risk(
            [p.risk_score for p in patterns],
            [p.violation_count for p in patterns],
        )
        types_detected = []
        for p in patterns:
            if p.pattern_type not in types_detected:
                types_detected.append(p.pattern_type)

        return {
            "phone_hash": phone_hash,
            "patterns": [p.to_dict() for p in patterns],
            "overall_risk_level": level.value,
            "time_window_analyzed": time_window,
            "analysis_summary": {
                "total_violations": sum(p.violation_count for p in patterns),
                "highest_risk_score": max([p.risk_score for p in patterns], default=0),
                "pattern_types_detected": types_detected,
                "recommendation": pattern_recommendation(level),
            },
        }
