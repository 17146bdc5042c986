"""
Red-flag keyword scanner.
Stored keywords (with their regex) are matched against feedback content
and turned into the 0-20 keyword component of the fraud score.
"""

import re
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from fraudscore.config import settings
from fraudscore.database import commit_or_raise
from fraudscore.errors import FraudValidationError, StorageError
from fraudscore.models.red_flag_keyword import RedFlagKeyword, KeywordCategory
from fraudscore.utils.logging_config import StructuredLogger, metrics
from fraudscore.utils.risk_levels import round_half_up

logger = StructuredLogger(__name__)

CATEGORIES = [c.value for c in KeywordCategory]

# Default Swedish/English list: (keyword, category, severity, language, pattern)
DEFAULT_KEYWORDS = [
    ("flygande elefanter", "nonsensical", 8, "sv", r"\b(flygande\s+elefanter|flying\s+elephants)\b"),
    ("teleportering", "nonsensical", 7, "sv", r"\bteleporter(ing|ade)\b"),
    ("tidsresor", "nonsensical", 9, "sv", r"\btidsresa(r|de|t)?\b"),
    ("magiska krafter", "nonsensical", 6, "sv", r"\bmagiska?\s+krafter\b"),
    ("levitating", "nonsensical", 7, "en", r"\blevitat(ing|ed)\b"),
    ("bomb", "threats", 10, "sv", r"\bbomb(er|en|ade)?\b"),
    ("hot", "threats", 8, "sv", r"\bhot(ar|ade|else)?\b"),
    ("våld", "threats", 9, "sv", r"\bvåld(sam|samma|t)?\b"),
    ("skada", "threats", 7, "sv", r"\bskada(r|de|des)?\b"),
    ("döda", "threats", 10, "sv", r"\bdöd(a|ar|ade)\b"),
    ("helvete", "profanity", 5, "sv", r"\bhelvet(e|es)\b"),
    ("fan", "profanity", 4, "sv", r"\bfan(en)?\b"),
    ("skit", "profanity", 3, "sv", r"\bskit(en|ig|igt)?\b"),
    ("gratis allt", "impossible", 8, "sv", r"\bgratis\s+allt\b"),
    ("miljoner kronor", "impossible", 9, "sv", r"\bmiljoner?\s+kronor\b"),
    ("omedelbar betalning", "impossible", 7, "sv", r"\bomedelbar(t)?\s+betalnin(g|gar)\b"),
]

HIGH_SEVERITY = 8


@dataclass
class KeywordMatch:
    """A single regex hit in the scanned content."""
    keyword: str
    category: str
    severity_level: int
    match_position: int
    match_text: str
    detection_pattern: str
    context_snippet: str


@dataclass
class KeywordDetectionResult:
    keywords_found: List[KeywordMatch] = field(default_factory=list)
    total_severity_score: int = 0
    category_distribution: Dict[str, int] = field(
        default_factory=lambda: {c: 0 for c in CATEGORIES}
    )
    language_analyzed: str = "sv"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keywords_found": [asdict(m) for m in self.keywords_found],
            "total_severity_score": self.total_severity_score,
            "category_distribution": dict(self.category_distribution),
            "language_analyzed": self.language_analyzed,
        }


class CompiledPatternCache:
    """
    In-memory cache of compiled keyword regexes.
    Keyed by (keyword id, pattern text) so an edited pattern is recompiled.
    """

    def __init__(self, max_size: int = 512):
        self._cache: Dict[Tuple[int, str], re.Pattern] = {}
        self._max_size = max_size

    def get(self, keyword_id: int, pattern: str) -> re.Pattern:
        """Return the compiled pattern. Raises re.error for an invalid one."""
        key = (keyword_id, pattern)
        compiled = self._cache.get(key)
        if compiled is not None:
            return compiled

        compiled = re.compile(pattern, re.I)
        if len(self._cache) >= self._max_size:
            # dicts keep insertion order; drop the oldest entry
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = compiled
        return compiled

    def clear(self):
        self._cache.clear()

    @property
    def size(self) -> int:
        return len(self._cache)


pattern_cache = CompiledPatternCache(max_size=settings.keyword_pattern_cache_size)


def default_pattern(keyword: str) -> str:
    return rf"\b{re.escape(keyword)}\b"


def validate_keyword_request(data: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """
    Check a keyword create request without touching the database.

    Returns:
        (is_valid, errors)
    """
    errors = []

    keyword = data.get("keyword")
    if not keyword or not str(keyword).strip():
        errors.append("Keyword is required")
    elif len(str(keyword).strip()) > 100:
        errors.append("Keyword must be 100 characters or less")

    if data.get("category") not in CATEGORIES:
        errors.append(f"Category must be one of: {', '.join(CATEGORIES)}")

    severity = data.get("severity_level")
    if not isinstance(severity, int) or isinstance(severity, bool) or not 1 <= severity <= 10:
        errors.append("Severity level must be between 1 and 10")

    pattern = data.get("detection_pattern")
    if pattern:
        try:
            re.compile(pattern)
        except re.error:
            errors.append("Detection pattern must be a valid regex")

    language = data.get("language_code")
    valid_languages = settings.supported_languages_list
    if language and language not in valid_languages:
        errors.append(f"Language code must be one of: {', '.join(valid_languages)}")

    return len(errors) == 0, errors


def calculate_fraud_score_contribution(result: KeywordDetectionResult) -> int:
    """
    Turn a detection result into the keyword component (0-20).

    Total severity is capped, then each extra category adds 2 and each
    high-severity (>= 8) match adds 3 before scaling to the 0-20 range.
    """
    if not result.keywords_found:
        return 0

    cap = settings.keyword_severity_cap
    base = min(result.total_severity_score, cap)

    categories_hit = sum(1 for count in result.category_distribution.values() if count > 0)
    category_bonus = max(0, (categories_hit - 1) * 2)

    high_severity = sum(1 for m in result.keywords_found if m.severity_level >= HIGH_SEVERITY)
    severity_bonus = high_severity * 3

    score = round_half_up((base + category_bonus + severity_bonus) / cap * settings.keyword_weight)
    return max(0, min(settings.keyword_weight, score))


class KeywordService:
    """Keyword store and scanner bound to a database session."""

    def __init__(self, db: Session, cache: Optional[CompiledPatternCache] = None):
        self.db = db
        self.cache = cache or pattern_cache

    # ==================== MANAGEMENT ====================

    def create_keyword(
        self,
        keyword: str,
        category: str,
        severity_level: int,
        language_code: Optional[str] = None,
        detection_pattern: Optional[str] = None,
        created_by: Optional[str] = None,
        is_active: bool = True,
    ) -> RedFlagKeyword:
        language_code = language_code or settings.default_language
        is_valid, errors = validate_keyword_request({
            "keyword": keyword,
            "category": category,
            "severity_level": severity_level,
            "language_code": language_code,
            "detection_pattern": detection_pattern,
        })
        if not is_valid:
            raise FraudValidationError("; ".join(errors))

        keyword = keyword.strip()
        existing = (
            self.db.query(RedFlagKeyword)
            .filter(
                func.lower(RedFlagKeyword.keyword) == keyword.lower(),
                RedFlagKeyword.language_code == language_code,
            )
            .first()
        )
        if existing:
            raise FraudValidationError("Keyword already exists")

        row = RedFlagKeyword(
            keyword=keyword,
            category=category,
            severity_level=severity_level,
            language_code=language_code,
            detection_pattern=detection_pattern or default_pattern(keyword),
            is_active=is_active,
            created_by=created_by,
        )
        self.db.add(row)
        commit_or_raise(self.db, "create keyword")
        self.db.refresh(row)

        logger.info("Keyword created", keyword_id=row.id, category=category, language=language_code)
        return row

    def update_keyword(
        self,
        keyword_id: int,
        severity_level: Optional[int] = None,
        detection_pattern: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[RedFlagKeyword]:
        if severity_level is not None and not 1 <= severity_level <= 10:
            raise FraudValidationError("Severity level must be between 1 and 10")
        if category is not None and category not in CATEGORIES:
            raise FraudValidationError(f"Invalid category: {category}")
        if detection_pattern is not None:
            try:
                re.compile(detection_pattern)
            except re.error as e:
                raise FraudValidationError(f"Invalid regex pattern: {e}") from e

        row = self.get_by_id(keyword_id)
        if row is None:
            return None

        if severity_level is not None:
            row.severity_level = severity_level
        if detection_pattern is not None:
            row.detection_pattern = detection_pattern
        if category is not None:
            row.category = category
        if is_active is not None:
            row.is_active = is_active

        commit_or_raise(self.db, "update keyword")
        self.db.refresh(row)
        return row

    def deactivate_keyword(self, keyword_id: int) -> bool:
        return self.update_keyword(keyword_id, is_active=False) is not None

    def get_by_id(self, keyword_id: int) -> Optional[RedFlagKeyword]:
        return self.db.query(RedFlagKeyword).filter(RedFlagKeyword.id == keyword_id).first()

    def get_active_keywords(
        self,
        language: Optional[str] = None,
        category: Optional[str] = None,
        sort_by: str = "severity",
    ) -> List[RedFlagKeyword]:
        query = self.db.query(RedFlagKeyword).filter(RedFlagKeyword.is_active.is_(True))
        if language:
            query = query.filter(RedFlagKeyword.language_code == language)
        if category:
            query = query.filter(RedFlagKeyword.category == category)

        if sort_by == "keyword":
            query = query.order_by(RedFlagKeyword.keyword.asc())
        elif sort_by == "created_at":
            query = query.order_by(RedFlagKeyword.created_at.desc())
        else:
            query = query.order_by(RedFlagKeyword.severity_level.desc(), RedFlagKeyword.id.asc())

        return query.all()

    def get_by_category(self, category: str, language: Optional[str] = None) -> List[RedFlagKeyword]:
        if category not in CATEGORIES:
            raise FraudValidationError(f"Invalid category: {category}")
        return self.get_active_keywords(language=language, category=category)

    def search_keywords(
        self,
        search_query: str,
        category: Optional[str] = None,
        language: Optional[str] = None,
        active_only: bool = True,
    ) -> List[RedFlagKeyword]:
        query = self.db.query(RedFlagKeyword).filter(
            RedFlagKeyword.keyword.ilike(f"%{search_query}%")
        )
        if category:
            query = query.filter(RedFlagKeyword.category == category)
        if language:
            query = query.filter(RedFlagKeyword.language_code == language)
        if active_only:
            query = query.filter(RedFlagKeyword.is_active.is_(True))
        return query.order_by(RedFlagKeyword.severity_level.desc()).all()

    def bulk_create(self, keywords: List[Dict[str, Any]], created_by: str) -> Dict[str, Any]:
        """Create many keywords; failures are collected rather than raised."""
        created = 0
        errors = []
        for data in keywords:
            try:
                self.create_keyword(
                    keyword=data.get("keyword"),
                    category=data.get("category"),
                    severity_level=data.get("severity_level"),
                    language_code=data.get("language_code"),
                    detection_pattern=data.get("detection_pattern"),
                    created_by=created_by,
                )
                created += 1
            except (FraudValidationError, StorageError) as e:
                errors.append({"keyword": data.get("keyword"), "error": str(e)})

        logger.info("Bulk keyword import", created=created, failed=len(errors))
        return {"created": created, "errors": errors}

    def initialize_default_keywords(self, created_by: str = "system") -> int:
        """Seed the default list. Keywords that already exist are left alone."""
        created = 0
        for keyword, category, severity, language, pattern in DEFAULT_KEYWORDS:
            exists = (
                self.db.query(RedFlagKeyword.id)
                .filter(RedFlagKeyword.keyword == keyword, RedFlagKeyword.language_code == language)
                .first()
            )
            if exists:
                continue
            self.db.add(RedFlagKeyword(
                keyword=keyword,
                category=category,
                severity_level=severity,
                language_code=language,
                detection_pattern=pattern,
                created_by=created_by,
            ))
            created += 1

        if created:
            commit_or_raise(self.db, "seed default keywords")
            logger.info("Default keywords seeded", created=created)
        return created

    def get_statistics(self) -> Dict[str, Any]:
        rows = self.db.query(RedFlagKeyword).all()
        active = [r for r in rows if r.is_active]

        category_distribution = {c: 0 for c in CATEGORIES}
        severity_distribution: Dict[str, int] = {}
        language_distribution: Dict[str, int] = {}
        for row in active:
            category_distribution[row.category] = category_distribution.get(row.category, 0) + 1
            level = f"Level {row.severity_level}"
            severity_distribution[level] = severity_distribution.get(level, 0) + 1
            language_distribution[row.language_code] = language_distribution.get(row.language_code, 0) + 1

        average = sum(r.severity_level for r in active) / len(active) if active else 0.0

        return {
            "total_keywords": len(rows),
            "active_keywords": len(active),
            "category_distribution": category_distribution,
            "severity_distribution": severity_distribution,
            "language_distribution": language_distribution,
            "average_severity": round(average, 2),
        }

    # ==================== DETECTION ====================

    def detect_keywords(self, content: str, language: Optional[str] = None) -> KeywordDetectionResult:
        """
        Scan content with every active keyword of the language.

        Every match counts, including repeated ones. A keyword whose stored
        pattern does not compile is logged and skipped.
        """
        language = language or settings.default_language
        result = KeywordDetectionResult(language_analyzed=language)
        if not content:
            return result

        radius = settings.keyword_context_chars
        for kw in self.get_active_keywords(language=language):
            try:
                regex = self.cache.get(kw.id, kw.detection_pattern)
            except re.error as e:
                logger.warning(
                    "Skipping keyword with invalid pattern",
                    keyword_id=kw.id,
                    keyword=kw.keyword,
                    error=str(e),
                )
                metrics.increment("keywords.invalid_pattern")
                continue

            for match in regex.finditer(content):
                start, end = match.start(), match.end()
                result.keywords_found.append(KeywordMatch(
                    keyword=kw.keyword,
                    category=kw.category,
                    severity_level=kw.severity_level,
                    match_position=start,
                    match_text=match.group(0),
                    detection_pattern=kw.detection_pattern,
                    context_snippet=content[max(0, start - radius):end + radius],
                ))
                result.total_severity_score += kw.severity_level
                result.category_distribution[kw.category] = result.category_distribution.get(kw.category, 0) + 1

        metrics.gauge("keywords.cache_size", self.cache.size)
        logger.debug(
            "Keyword scan finished",
            language=language,
            matches=len(result.keywords_found),
            total_severity=result.total_severity_score,
        )
        return result
