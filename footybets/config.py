"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 60_000  # Postgres only
    DB_SESSION_RETRIES: int = 3

    # Fantasy Premier League public API (fixtures, teams, gameweeks)
    FPL_BASE_URL: str = "https://fantasy.premierleague.com/api"
    FPL_BADGE_URL: str = "https://resources.premierleague.com/premierleague/badges"
    FPL_TIMEOUT_SECONDS: float = 20.0

    # ═══════════════════════════════════════════════════════════════
    # Game rules
    # ═══════════════════════════════════════════════════════════════
    DEADLINE_OFFSET_MINUTES: int = 60  # Betting closes this long before kickoff
    CORRECT_PREDICTION_POINTS: int = 1
    DAYS_BEFORE_GAMEWEEK_VISIBLE: int = 3
    GAMEWEEK_END_GRACE_HOURS: int = 4  # Gameweek ends at last kickoff + grace
    MATCHES_TO_FETCH: int = 3  # Matches offered per gameweek
    BIG_TEAMS: str = "Arsenal,Liverpool,Man Utd,Man City,Spurs,Chelsea"
    PERFECT_SCORE_MIN_BETS: int = 3
    XP_PER_LEVEL: int = 10
    LEADERBOARD_LIMIT: int = 5

    # Match data cache (per gameweek)
    MATCH_CACHE_TTL_SECONDS: int = 24 * 60 * 60
    BYPASS_CACHE: bool = False  # Debug only: force every read past the cache

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SETTLEMENT_INTERVAL_MINUTES: int = 5

    # API Security
    CRON_SECRET: str = ""  # Bearer token for /cron/* endpoints
    RATE_LIMIT_PER_MINUTE: str = "60/minute"
    METRICS_BEARER_TOKEN: str = ""  # Optional; /metrics is open when unset

    # Telegram notifications (settlement updates and alerts)
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    TELEGRAM_TIMEOUT_SECONDS: float = 10.0

    # Email Alerting (SMTP) - hard alerts only
    SMTP_ENABLED: bool = False
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""
    SMTP_TO_EMAIL: str = ""
    ALERT_COOLDOWN_MINUTES: int = 60  # Min time between same alert type

    # Frames
    DOC_URL: str = "https://farcaster-fl-bets-doc.vercel.app/"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def big_teams(self) -> list[str]:
        """BIG_TEAMS as a list of team names."""
        return [name.strip() for name in self.BIG_TEAMS.split(",") if name.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
