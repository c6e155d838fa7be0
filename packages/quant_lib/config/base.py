# packages/quant_lib/config/base.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

# packages/quant_lib/config/base.py -> repository root
PROJECT_ROOT = Path(__file__).resolve().parents[3]

# Later files win: the shared .env, then scanner-only overrides (API keys, DATABASE_URL).
ENV_FILES = (PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.scanner")


class EnvConfig(BaseSettings):
    """
    Base for every config section. Process environment first, then the env
    files above. Unknown keys are ignored so one .env can serve every service.
    """

    model_config = SettingsConfigDict(
        env_file=ENV_FILES,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )
