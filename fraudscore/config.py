from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List


class Settings(BaseSettings):
    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    environment: str = "dev"  # "dev", "prod"
    debug: bool = True

    # ==========================================================================
    # DATABASE
    # ==========================================================================
    database_url: str = "sqlite:///./fraudscore.db"

    # ==========================================================================
    # OPENAI (context legitimacy classifier)
    # ==========================================================================
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_max_tokens: int = 800

    # ==========================================================================
    # API SECURITY
    # ==========================================================================
    api_token: str = ""  # Required in production, optional in dev
    api_token_header: str = "X-API-Key"

    # ==========================================================================
    # RATE LIMITING
    # ==========================================================================
    rate_limit_requests: int = 60  # Max requests per window
    rate_limit_window: int = 60  # Window in seconds

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: str = "*"

    # ==========================================================================
    # COMPONENT WEIGHTS (max points per component, must sum to 100)
    # ==========================================================================
    context_weight: int = 40
    keyword_weight: int = 20
    behavioral_weight: int = 30
    transaction_weight: int = 10

    # ==========================================================================
    # RISK THRESHOLDS (0-100 composite scale, lower bound inclusive)
    # ==========================================================================
    critical_risk_threshold: float = 85.0
    high_risk_threshold: float = 70.0
    medium_risk_threshold: float = 40.0
    fraud_threshold: float = 70.0  # composite >= this = fraudulent

    # ==========================================================================
    # KEYWORD DETECTION
    # ==========================================================================
    default_language: str = "sv"
    supported_languages: str = "sv,en,no,da"
    keyword_severity_cap: int = 50  # total severity is capped here before scaling
    keyword_context_chars: int = 50  # snippet radius around each match
    keyword_pattern_cache_size: int = 512

    # ==========================================================================
    # BEHAVIORAL PATTERNS
    # ==========================================================================
    call_frequency_threshold: int = 5  # calls per window
    call_frequency_window_minutes: int = 30
    similarity_threshold: float = 0.85
    location_radius_km: float = 5.0
    impossible_travel_kmh: float = 500.0
    rapid_succession_minutes: float = 2.0
    pattern_retention_days: int = 90  # resolved patterns older than this are purged
    critical_pattern_threshold: int = 80

    # ==========================================================================
    # SCORE LIFECYCLE
    # ==========================================================================
    analysis_version: str = "1.0.0"
    score_ttl_hours: int = 24 * 30  # 0 disables expiry

    # ==========================================================================
    # ALERTS
    # ==========================================================================
    alert_cooldown_seconds: int = 900

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_weights(self):
        total = (
            self.context_weight
            + self.keyword_weight
            + self.behavioral_weight
            + self.transaction_weight
        )
        if total != 100:
            raise ValueError(f"Component weights must sum to 100, got {total}")
        if not (
            self.critical_risk_threshold
            >= self.high_risk_threshold
            >= self.medium_risk_threshold
        ):
            raise ValueError("Risk thresholds must be ordered critical >= high >= medium")
        return self

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "prod"

    @property
    def cors_origins_list(self) -> list:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def supported_languages_list(self) -> List[str]:
        return [lang.strip() for lang in self.supported_languages.split(",") if lang.strip()]

    @property
    def component_weights(self) -> Dict[str, int]:
        """Max points per component, keyed by component name."""
        return {
            "context": self.context_weight,
            "keyword": self.keyword_weight,
            "behavioral": self.behavioral_weight,
            "transaction": self.transaction_weight,
        }


settings = Settings()
