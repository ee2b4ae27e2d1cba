"""Configuration management for the statement reconciliation tool."""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass
class MatchingConfig:
    """Match scorer configuration."""
    amount_tolerance: Decimal = field(
        default_factory=lambda: Decimal(os.getenv("AMOUNT_TOLERANCE", "0.01"))
    )
    date_window_days: int = field(
        default_factory=lambda: int(os.getenv("DATE_WINDOW_DAYS", "10"))
    )
    min_match_score: int = field(
        default_factory=lambda: int(os.getenv("MIN_MATCH_SCORE", "30"))
    )
    max_suggestions: int = field(
        default_factory=lambda: int(os.getenv("MAX_SUGGESTIONS", "5"))
    )
    high_confidence_score: int = 70
    medium_confidence_score: int = 50

    # Points awarded per factor (scores are additive, not normalized)
    weight_exact_amount: int = 50
    weight_close_amount: int = 30
    weight_similar_amount: int = 15
    close_amount_pct: Decimal = Decimal("0.05")
    similar_amount_pct: Decimal = Decimal("0.10")
    weight_date: int = 30
    date_decay_per_day: int = 3
    weight_description: int = 20
    description_points_per_token: int = 7
    weight_status_bonus: int = 5


@dataclass
class LedgerConfig:
    """Ledger gateway configuration."""
    api_url: str = field(default_factory=lambda: os.getenv("LEDGER_API_URL", ""))
    api_token: str = field(default_factory=lambda: os.getenv("LEDGER_API_TOKEN", ""))
    timeout: int = field(
        default_factory=lambda: int(os.getenv("LEDGER_API_TIMEOUT", "30"))
    )
    currency: str = field(default_factory=lambda: os.getenv("LEDGER_CURRENCY", "BRL"))
    default_category: str = "Importado do banco"
    candidate_limit: int = 500
    history_limit: int = 5000
    import_list_limit: int = 50

    def is_configured(self) -> bool:
        return bool(self.api_url)


@dataclass
class Config:
    """Main application configuration."""
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./reconciliation.db")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    reports_dir: Path = field(default_factory=lambda: Path(os.getenv("REPORTS_DIR", "./reports")))


# Global config instance
config = Config()
