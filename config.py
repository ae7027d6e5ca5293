"""
Configuration module for Drive folder copy / owner change jobs
"""
import os
from pathlib import Path
from dotenv import load_dotenv

from budget_tracker import BudgetProfile, PERSONAL_PROFILE, WORKSPACE_PROFILE

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


class Config:
    """Configuration settings for tree copy jobs"""

    # OAuth 2.0 Scopes Required
    SCOPES = [
        'https://www.googleapis.com/auth/drive',
    ]

    # Credentials
    CREDENTIALS_FILE = os.getenv('CREDENTIALS_FILE', 'credentials.json')
    TOKEN_FILE = os.getenv('TOKEN_FILE', 'token.pickle')
    DELEGATE_EMAIL = os.getenv('DELEGATE_EMAIL') or None

    # Engine Settings
    MAX_ATTEMPTS = int(os.getenv('MAX_ATTEMPTS', '3'))
    PAGE_SIZE = int(os.getenv('PAGE_SIZE', '1000'))
    TIMEZONE = os.getenv('TIMEZONE', 'UTC')

    # Budget profile: Workspace accounts get the looser quota
    IS_GOOGLE_WORKSPACE = _flag('IS_GOOGLE_WORKSPACE', 'True')

    # Feature flags
    SKIP_DUPLICATE_ID = _flag('SKIP_DUPLICATE_ID', 'True')
    # SKIP_DUPLICATE_ID must be on for CREATE_SHORTCUTS_WHEN_DUPLICATE to take effect
    CREATE_SHORTCUTS_WHEN_DUPLICATE = _flag('CREATE_SHORTCUTS_WHEN_DUPLICATE', 'True')
    CREATE_SHORTCUT_COPIES = _flag('CREATE_SHORTCUT_COPIES', 'True')
    REPLACE_DESCRIPTION_WITH_ORIGINAL_LINK = _flag('REPLACE_DESCRIPTION_WITH_ORIGINAL_LINK', 'True')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'tree_copy.log')

    # Database/State Management
    STATE_DB_FILE = os.getenv('STATE_DB_FILE', 'tree_copy_state.db')

    # Output
    REPORT_DIR = Path(os.getenv('REPORT_DIR', 'reports'))
    REPORT_DIR.mkdir(exist_ok=True)

    @classmethod
    def budget_profile(cls) -> BudgetProfile:
        """Budget profile for the current deployment"""
        return WORKSPACE_PROFILE if cls.IS_GOOGLE_WORKSPACE else PERSONAL_PROFILE

    @classmethod
    def validate(cls, require_credentials: bool = True):
        """Validate required configuration"""
        if cls.MAX_ATTEMPTS < 1:
            raise ValueError(f"MAX_ATTEMPTS must be at least 1, got {cls.MAX_ATTEMPTS}")

        if not 1 <= cls.PAGE_SIZE <= 1000:
            raise ValueError(f"PAGE_SIZE must be between 1 and 1000, got {cls.PAGE_SIZE}")

        if require_credentials and not Path(cls.CREDENTIALS_FILE).exists():
            raise FileNotFoundError(f"Credentials file not found: {cls.CREDENTIALS_FILE}")

        return True
