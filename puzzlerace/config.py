import os
from dotenv import load_dotenv

from puzzlerace.constants import RefreshConstants
from puzzlerace.utils.scoring import ScoringStrategyFactory

load_dotenv()

class Config:
    """Puzzle race configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///puzzlerace.db')

    # Upstream room API (roster + completions)
    API_BASE_URL = os.getenv('API_BASE_URL', '')
    SESSION_TOKEN = os.getenv('SESSION_TOKEN', '')
    ROOM_ID = os.getenv('ROOM_ID', '')

    # Runtime settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Refresh settings
    COMPLETIONS_REFRESH_SECONDS = float(os.getenv('COMPLETIONS_REFRESH_SECONDS', RefreshConstants.DEFAULT_COMPLETIONS_INTERVAL))
    FETCH_TIMEOUT_SECONDS = float(os.getenv('FETCH_TIMEOUT_SECONDS', RefreshConstants.DEFAULT_FETCH_TIMEOUT))

    # Scoring settings
    SCORING_STRATEGY = os.getenv('SCORING_STRATEGY', 'pairwise')

    @classmethod
    def get_default_room(cls):
        """Room to open on start, or None when unset"""
        room_id = cls.ROOM_ID.strip()
        return room_id or None

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.API_BASE_URL:
            raise ValueError("API_BASE_URL is required")
        if cls.COMPLETIONS_REFRESH_SECONDS <= 0:
            raise ValueError("COMPLETIONS_REFRESH_SECONDS must be positive")
        if cls.FETCH_TIMEOUT_SECONDS <= 0:
            raise ValueError("FETCH_TIMEOUT_SECONDS must be positive")
        if cls.SCORING_STRATEGY.strip().lower() not in ScoringStrategyFactory.get_available_strategies():
            raise ValueError(
                f"SCORING_STRATEGY must be one of {ScoringStrategyFactory.get_available_strategies()}, "
                f"got '{cls.SCORING_STRATEGY}'"
            )
