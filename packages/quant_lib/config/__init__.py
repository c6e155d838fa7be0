# packages/quant_lib/config/__init__.py

from pydantic_settings import BaseSettings


# Import sub-configs
from .base import PROJECT_ROOT
from .database import DatabaseConfig
from .providers import ProvidersConfig
from .scanner import ScannerConfig
from .system import SystemConfig


class Settings(BaseSettings):
    # Composition: Grouping configs by domain
    db: DatabaseConfig = DatabaseConfig()
    providers: ProvidersConfig = ProvidersConfig()
    scanner: ScannerConfig = ScannerConfig()
    system: SystemConfig = SystemConfig()


# Singleton Instance
try:
    settings = Settings()
except Exception as e:
    print(f"CRITICAL: Config load failed. Details: {e}")
    raise e
