#!/usr/bin/env python3
"""
Configuration Manager for the SDF Converter
Handles environment variables, the .env file and profile defaults centrally
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass

from sdfconvert.pipeline import BATCH_SIZE as MAX_BATCH_SIZE


@dataclass
class ConverterConfig:
    """Converter configuration settings"""

    # Output settings
    schema_name: str = "public"
    target_table: str = "attendance"
    batch_size: int = MAX_BATCH_SIZE

    # Connection protocol settings
    password: str = None
    max_password_attempts: int = 3
    lock_retries: int = 3
    lock_retry_delay: float = 1.0

    # Runtime settings
    log_level: str = "INFO"

    # Profile settings
    profile: str = "dev"  # dev, prod

    def __post_init__(self):
        """Load environment variables"""
        self.profile = os.environ.get('SDFCONV_PROFILE', 'dev')

        self.schema_name = os.environ.get('SDFCONV_SCHEMA', self.schema_name)
        self.target_table = os.environ.get('SDFCONV_TARGET_TABLE', self.target_table)
        self.batch_size = int(os.environ.get('SDFCONV_BATCH_SIZE', str(self.batch_size)))

        # Secret: never logged, never serialised
        self.password = os.environ.get('SDFCONV_PASSWORD') or None

        self.max_password_attempts = int(
            os.environ.get('SDFCONV_MAX_PASSWORD_ATTEMPTS', str(self.max_password_attempts)))
        self.lock_retries = int(os.environ.get('SDFCONV_LOCK_RETRIES', str(self.lock_retries)))
        self.lock_retry_delay = float(
            os.environ.get('SDFCONV_LOCK_RETRY_DELAY', str(self.lock_retry_delay)))

        self.log_level = os.environ.get('SDFCONV_LOG_LEVEL', 'INFO').upper()

        # Apply profile defaults if not overridden
        if self.profile == 'prod' and 'SDFCONV_LOG_LEVEL' not in os.environ:
            self.log_level = 'WARNING'

        if not 1 <= self.batch_size <= MAX_BATCH_SIZE:
            raise ValueError(
                f"SDFCONV_BATCH_SIZE must be between 1 and {MAX_BATCH_SIZE} (got {self.batch_size})")

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration as dict without sensitive values"""
        return {
            'schema_name': self.schema_name,
            'target_table': self.target_table,
            'batch_size': self.batch_size,
            'password_configured': bool(self.password),
            'max_password_attempts': self.max_password_attempts,
            'lock_retries': self.lock_retries,
            'lock_retry_delay': self.lock_retry_delay,
            'log_level': self.log_level,
            'profile': self.profile,
        }


class ConfigManager:
    """Singleton configuration manager"""

    _instance: Optional['ConfigManager'] = None
    _config: Optional[ConverterConfig] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load_config()

    def load_config(self, env_file: Optional[Path] = None):
        """Load configuration from the environment.

        Priority (highest to lowest):
        1. Environment variables (SDFCONV_*)
        2. .env file (loaded into os.environ before config creation)
        3. ConverterConfig dataclass defaults
        """
        if env_file is None:
            base_dir = Path(os.environ.get('SDFCONV_HOME', Path.cwd()))
            env_file = base_dir / '.env'
        if env_file.exists():
            self._load_env_file(env_file)

        self._config = ConverterConfig()

    def _load_env_file(self, env_file: Path):
        """Load environment variables from .env file.

        Only sets values for keys not already in os.environ,
        ensuring exported env vars take precedence over .env file.
        """
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        key = key.strip()
                        if key not in os.environ:
                            os.environ[key] = value.strip().strip('"').strip("'")
        except OSError as e:
            print(f"Warning: Could not load .env file: {e}")

    @property
    def config(self) -> ConverterConfig:
        """Get the current configuration"""
        if self._config is None:
            self.load_config()
        return self._config

    @classmethod
    def reset(cls):
        """Drop the cached configuration so the next access re-reads the environment"""
        cls._config = None
        if cls._instance is not None:
            cls._instance._config = None


def get_config() -> ConverterConfig:
    """Get the global configuration instance"""
    return ConfigManager().config


if __name__ == "__main__":
    config = get_config()
    print("SDF Converter Configuration:")
    print("-" * 40)
    for key, value in config.get_safe_dict().items():
        print(f"  {key}: {value}")
