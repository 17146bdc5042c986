"""
Behavioral pattern detectors.
Run over a phone hash's recent call history and report anomalies
(call bursts, odd timing, impossible travel, scripted transcripts).
Each detector returns points on a 0-30 scale or None when nothing fired.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from geopy.distance import geodesic

from fraudscore.config import settings
from fraudscore.models.behavioral_pattern import PatternType
from fraudscore.utils.risk_levels import round_half_up

MAX_POINTS = 30.0

UNUSUAL_HOURS = {0, 1, 2, 3, 4, 5, 22, 23}
WEEKEND_DAYS = {5, 6}  # Saturday, Sunday


@dataclass
class CallEvent:
    """One inbound call. Location and transcript are optional."""
    timestamp: datetime
    call_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    transcript: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class PatternDetection:
    """Result of a single detector."""
    pattern_type: PatternType
    points: float  # 0-30
    confidence: float
    violations: List[Dict[str, Any]] = field(default_factory=list)
    analysis_summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def risk_score(self) -> float:
        """Points rescaled to the 0-100 range stored on a BehavioralPattern."""
        return round(self.points / MAX_POINTS * 100, 2)

    @property
    def detection_rules(self) -> List[Dict[str, Any]]:
        fired = {v["pattern_type"] for v in self.violations}
        return [{"rule_name": name, "triggered": name in fired} for name in RULES[self.pattern_type]]

    def to_pattern_data(self) -> Dict[str, Any]:
        return {
            "points": self.points,
            "confidence": self.confidence,
            "violations": self.violations,
            "analysis_summary": self.analysis_summary,
        }


RULES = {
    PatternType.CALL_FREQUENCY: ["call_burst"],
    PatternType.TIME_PATTERN: ["unusual_hours", "weekend_clustering", "rapid_succession"],
    PatternType.LOCATION_PATTERN: ["impossible_travel", "geographic_clustering"],
    PatternType.SIMILARITY_PATTERN: ["high_similarity", "scripted_responses"],
}


def _iso(ts: datetime) -> str:
    return ts.isoformat()


def _distance_km(a: CallEvent, b: CallEvent) -> float:
    return geodesic((a.latitude, a.longitude), (b.latitude, b.longitude)).km


def group_calls_by_window(calls: List[CallEvent], window_minutes: int) -> List[Dict[str, Any]]:
    """
    Group sorted calls into windows that start at a call and extend
    `window_minutes` past the latest call added to them.
    """
    span = timedelta(minutes=window_minutes)
    windows: List[Dict[str, Any]] = []
    for call in sorted(calls, key=lambda c: c.timestamp):
        for window in windows:
            if call.timestamp <= window["end"]:
                window["calls"].append(call)
                window["end"] = max(window["end"], call.timestamp + span)
                break
        else:
            windows.append({"start": call.timestamp, "end": call.timestamp + span, "calls": [call]})
    return windows


def jaccard_similarity(text1: str, text2: str) -> float:
    words1 = set(text1.lower().split())
    words2 = set(text2.lower().split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def extract_phrases(text: str, length: int = 3) -> List[str]:
    """Word n-grams, skipping phrases of 10 characters or fewer."""
    words = text.lower().split()
    phrases = []
    for i in range(len(words) - length + 1):
        phrase = " ".join(words[i:i + length])
        if len(phrase) > 10:
            phrases.append(phrase)
    return phrases


def cluster_locations(calls: List[CallEvent], radius_km: float) -> List[Dict[str, Any]]:
    clusters: List[Dict[str, Any]] = []
    for call in calls:
        for cluster in clusters:
            if _distance_km(call, cluster["anchor"]) <= radius_km:
                cluster["calls"].append(call)
                break
        else:
            clusters.append({"anchor": call, "calls": [call]})
    return clusters


def _or_default(value, default):
    return default if value is None else value


class PatternDetector:
    """
    Runs the four behavioral detectors over a call history.

    Thresholds default to config values.
    """

    def __init__(
        self,
        frequency_threshold: Optional[int] = None,
        window_minutes: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        location_radius_km: Optional[float] = None,
        impossible_travel_kmh: Optional[float] = None,
        rapid_succession_minutes: Optional[float] = None,
    ):
        self.frequency_threshold = _or_default(frequency_threshold, settings.call_frequency_threshold)
        self.window_minutes = _or_default(window_minutes, settings.call_frequency_window_minutes)
        self.similarity_threshold = _or_default(similarity_threshold, settings.similarity_threshold)
        self.location_radius_km = _or_default(location_radius_km, settings.location_radius_km)
        self.impossible_travel_kmh = _or_default(impossible_travel_kmh, settings.impossible_travel_kmh)
        self.rapid_succession_minutes = _or_default(rapid_succession_minutes, settings.rapid_succession_minutes)

    def detect_all(self, calls: List[CallEvent]) -> List[PatternDetection]:
        detections = [
            self.detect_call_frequency(calls),
            self.detect_time_pattern(calls),
            self.detect_location_pattern(calls),
            self.detect_similarity_pattern(calls),
        ]
        return [d for d in detections if d is not None]

    def detect_call_frequency(self, calls: List[CallEvent]) -> Optional[PatternDetection]:
        if len(calls) < 2:
            return None

        windows = group_calls_by_window(calls, self.window_minutes)
        violations = []
        total_excess = 0
        max_calls = 0
        for window in windows:
            count = len(window["calls"])
            if count > self.frequency_threshold:
                excess = count - self.frequency_threshold
                total_excess += excess
                max_calls = max(max_calls, count)
                violations.append({
                    "pattern_type": "call_burst",
                    "window_start": _iso(window["start"]),
                    "window_end": _iso(window["end"]),
                    "call_count": count,
                    "threshold_exceeded": excess,
                })

        if not violations:
            return None

        base = min(20, total_excess * 2)
        intensity = min(10, (max_calls - self.frequency_threshold) * 1.5)
        points = min(MAX_POINTS, base + intensity)

        return PatternDetection(
            pattern_type=PatternType.CALL_FREQUENCY,
            points=round(points, 2),
            confidence=0.9,
            violations=violations,
            analysis_summary={
                "total_calls": len(calls),
                "time_windows_analyzed": len(windows),
                "violations_found": len(violations),
                "max_calls_in_window": max_calls,
                "threshold_used": self.frequency_threshold,
                "window_size_minutes": self.window_minutes,
            },
        )

    def detect_time_pattern(self, calls: List[CallEvent]) -> Optional[PatternDetection]:
        if len(calls) < 3:
            return None

        violations = []

        unusual = [c for c in calls if c.timestamp.hour in UNUSUAL_HOURS]
        if len(unusual) > 2:
            violations.append({
                "pattern_type": "unusual_hours",
                "description": f"{len(unusual)} calls during unusual hours (22:00-06:00)",
                "severity": min(10, len(unusual) * 2),
                "call_times": [_iso(c.timestamp) for c in unusual],
            })

        weekend = [c for c in calls if c.timestamp.weekday() in WEEKEND_DAYS]
        weekday_count = len(calls) - len(weekend)
        if len(weekend) > weekday_count and len(weekend) > 3:
            violations.append({
                "pattern_type": "weekend_clustering",
                "description": f"{len(weekend)} weekend calls vs {weekday_count} weekday calls",
                "severity": min(8, len(weekend) - weekday_count),
                "call_times": [_iso(c.timestamp) for c in weekend],
            })

        ordered = sorted(calls, key=lambda c: c.timestamp)
        rapid_limit = timedelta(minutes=self.rapid_succession_minutes)
        rapid_times = []
        for prev, curr in zip(ordered, ordered[1:]):
            if curr.timestamp - prev.timestamp < rapid_limit:
                rapid_times.extend([prev.timestamp, curr.timestamp])
        if len(rapid_times) > 2:
            violations.append({
                "pattern_type": "rapid_succession",
                "description": f"{len(rapid_times) // 2} pairs of calls within {self.rapid_succession_minutes:g} minutes",
                "severity": min(10, len(rapid_times)),
                "call_times": [_iso(t) for t in sorted(set(rapid_times))],
            })

        if not violations:
            return None

        points = min(MAX_POINTS, sum(v["severity"] for v in violations))
        return PatternDetection(
            pattern_type=PatternType.TIME_PATTERN,
            points=round(points, 2),
            confidence=0.8,
            violations=violations,
            analysis_summary={
                "total_calls": len(calls),
                "unusual_hour_calls": len(unusual),
                "weekend_calls": len(weekend),
                "weekday_calls": weekday_count,
                "rapid_succession_pairs": len(rapid_times) // 2,
            },
        )

    def detect_location_pattern(self, calls: List[CallEvent]) -> Optional[PatternDetection]:
        located = sorted((c for c in calls if c.has_location), key=lambda c: c.timestamp)
        if len(located) < 2:
            return None

        violations = []
        for prev, curr in zip(located, located[1:]):
            distance = _distance_km(prev, curr)
            hours = (curr.timestamp - prev.timestamp).total_seconds() / 3600
            if distance <= 0 or hours <= 0:
                continue
            speed = distance / hours
            if speed > self.impossible_travel_kmh:
                violations.append({
                    "pattern_type": "impossible_travel",
                    "description": f"Travel of {distance:.1f}km in {hours:.1f}h ({speed:.0f}km/h)",
                    "severity": min(10, speed / 100),
                    "locations": [
                        {"lat": prev.latitude, "lng": prev.longitude, "timestamp": _iso(prev.timestamp)},
                        {"lat": curr.latitude, "lng": curr.longitude, "timestamp": _iso(curr.timestamp)},
                    ],
                })

        clusters = cluster_locations(located, self.location_radius_km)
        if len(clusters) == 1 and len(located) > 5:
            violations.append({
                "pattern_type": "geographic_clustering",
                "description": f"All {len(located)} calls from same {self.location_radius_km:g}km area",
                "severity": min(8, len(located) - 5),
                "locations": [
                    {"lat": c.latitude, "lng": c.longitude, "timestamp": _iso(c.timestamp)}
                    for c in located
                ],
            })

        if not violations:
            return None

        points = min(MAX_POINTS, sum(v["severity"] for v in violations))
        return PatternDetection(
            pattern_type=PatternType.LOCATION_PATTERN,
            points=round(points, 2),
            confidence=0.7,
            violations=violations,
            analysis_summary={
                "total_calls": len(calls),
                "calls_with_location": len(located),
                "unique_locations": len(clusters),
                "impossible_travel_violations": sum(
                    1 for v in violations if v["pattern_type"] == "impossible_travel"
                ),
            },
        )

    def detect_similarity_pattern(self, calls: List[CallEvent]) -> Optional[PatternDetection]:
        transcribed = [c for c in calls if c.transcript]
        if len(transcribed) < 2:
            return None

        violations = []
        similarities = []
        for i, first in enumerate(transcribed):
            for j in range(i + 1, len(transcribed)):
                second = transcribed[j]
                similarity = jaccard_similarity(first.transcript, second.transcript)
                if similarity < self.similarity_threshold:
                    continue
                similarities.append(similarity)
                violations.append({
                    "pattern_type": "high_similarity",
                    "description": f"{similarity * 100:.1f}% similarity between calls",
                    "severity": round_half_up((similarity - 0.8) * 50),
                    "similar_calls": [
                        _call_preview(first, i, similarity),
                        _call_preview(second, j, similarity),
                    ],
                })

        phrase_counts = Counter()
        for call in transcribed:
            phrase_counts.update(extract_phrases(call.transcript, 3))
        repeated = [
            phrase for phrase, count in phrase_counts.most_common()
            if count > len(transcribed) * 0.5
        ]
        if len(repeated) > 2:
            violations.append({
                "pattern_type": "scripted_responses",
                "description": f"{len(repeated)} phrases repeated across {len(transcribed)} calls",
                "severity": min(10, len(repeated)),
                "repeated_phrases": repeated[:10],
                "similar_calls": [_call_preview(c, i, None) for i, c in enumerate(transcribed)],
            })

        if not violations:
            return None

        points = min(MAX_POINTS, sum(v["severity"] for v in violations))
        return PatternDetection(
            pattern_type=PatternType.SIMILARITY_PATTERN,
            points=round(points, 2),
            confidence=0.85,
            violations=violations,
            analysis_summary={
                "total_calls": len(calls),
                "calls_with_transcripts": len(transcribed),
                "high_similarity_pairs": len(similarities),
                "repeated_phrases": len(repeated),
                "average_similarity": round(sum(similarities) / len(similarities), 3) if similarities else 0.0,
            },
        )


def _call_preview(call: CallEvent, index: int, similarity: Optional[float]) -> Dict[str, Any]:
    preview = call.transcript[:100]
    if len(call.transcript) > 100:
        preview += "..."
    return {
        "call_id": call.call_id or f"call_{index}",
        "timestamp": _iso(call.timestamp),
        "similarity_score": similarity,
        "transcript_preview": preview,
    }


def composite_points(points: List[float]) -> float:
    """
    Combine detector points into one 0-30 behavioral score.
    Average, plus 2 per extra pattern type (bonus capped at 5).
    """
    if not points:
        return 0.0
    average = sum(points) / len(points)
    bonus = min(5, (len(points) - 1) * 2)
    return round(min(MAX_POINTS, average + bonus), 2)
