"""
Configuration validation and startup checks.

This module implements fail-fast validation so the service never starts in
production with a missing database, an unusable remote reporting URL or
monetary settings that cannot be parsed.
"""

import os
import sys
import warnings
from decimal import Decimal, InvalidOperation
from typing import List, Optional


class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid."""
    pass


def _env_flag(var_name: str, default: str) -> bool:
    return os.getenv(var_name, default).lower() in ('true', '1', 't')


class ConfigValidator:
    """Validates application configuration read from the environment."""

    def __init__(self, is_production: bool = None):
        """
        Initialize the configuration validator.

        Args:
            is_production: If None, production is assumed only when FLASK_ENV=production
        """
        if is_production is None:
            is_production = os.getenv('FLASK_ENV', '').lower() == 'production'

        self.is_production = is_production
        self.is_testing = _env_flag('TESTING', 'False')
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_database_config(self) -> str:
        """Validate the history database URL."""
        database_url = os.getenv('DATABASE_URL')

        if database_url:
            if not database_url.startswith(('postgresql://', 'postgresql+psycopg2://', 'sqlite://')):
                self.errors.append("CRITICAL: DATABASE_URL must use a supported database driver")
            return database_url

        if self.is_production:
            self.errors.append("CRITICAL: DATABASE_URL must be set in production environment")
        elif not self.is_testing:
            self.warnings.append("DATABASE_URL not set - using local SQLite database snowkingdom.db")
        return 'sqlite:///snowkingdom.db'

    def validate_money_setting(self, var_name: str, default: str) -> Decimal:
        """Validate a non-negative monetary setting such as PENNY_GAME_COST."""
        raw_value = os.getenv(var_name, default)
        try:
            value = Decimal(raw_value)
        except InvalidOperation:
            self.errors.append(f"CRITICAL: {var_name} must be a decimal number (got '{raw_value}')")
            return Decimal(default)
        if not value.is_finite() or value < 0:
            self.errors.append(f"CRITICAL: {var_name} must be a non-negative amount (got '{raw_value}')")
            return Decimal(default)
        return value

    def validate_rgs_config(self) -> dict:
        """Validate the optional Remote Gaming Server forwarding settings."""
        enabled = _env_flag('RGS_ENABLED', 'False')
        url = os.getenv('RGS_URL', 'http://localhost:5000')
        try:
            timeout = float(os.getenv('RGS_TIMEOUT_SECONDS', '3'))
        except ValueError:
            self.errors.append("CRITICAL: RGS_TIMEOUT_SECONDS must be a number")
            timeout = 3.0

        if enabled and not url.startswith(('http://', 'https://')):
            self.errors.append(f"CRITICAL: RGS_URL must be an http(s) URL when RGS_ENABLED is set (got '{url}')")
        if timeout <= 0:
            self.errors.append("CRITICAL: RGS_TIMEOUT_SECONDS must be positive")
            timeout = 3.0

        return {'RGS_ENABLED': enabled, 'RGS_URL': url.rstrip('/'), 'RGS_TIMEOUT_SECONDS': timeout}

    def validate_rate_limiting_config(self) -> str:
        """Validate rate limiting configuration."""
        rate_limit_uri = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')

        if rate_limit_uri == 'memory://' and self.is_production:
            self.warnings.append(
                "Rate limiting uses memory:// storage in production. "
                "Set RATELIMIT_STORAGE_URI to a Redis URL for multi-process deployments."
            )
        return rate_limit_uri

    def validate_cors_config(self) -> List[str]:
        """Validate CORS configuration."""
        cors_origins = os.getenv('CORS_ORIGINS', '')

        if not cors_origins and self.is_production:
            self.errors.append(
                "CRITICAL: CORS_ORIGINS must be set in production to specify allowed frontend domains"
            )
            return []

        if cors_origins:
            origins = [origin.strip() for origin in cors_origins.split(',') if origin.strip()]
            for origin in origins:
                if not origin.startswith(('http://', 'https://')):
                    self.warnings.append(f"CORS origin '{origin}' should include protocol (http:// or https://)")
            return origins

        return []

    def validate_game_config_dir(self) -> Optional[str]:
        game_config_dir = os.getenv('GAME_CONFIG_DIR')
        if game_config_dir and not os.path.isdir(game_config_dir):
            self.errors.append(f"CRITICAL: GAME_CONFIG_DIR '{game_config_dir}' is not a directory")
        return game_config_dir or None

    def validate_all(self) -> dict:
        """
        Validate all configuration settings.

        Returns:
            Dictionary containing validated configuration values

        Raises:
            ConfigValidationError: If critical configuration is missing or invalid
        """
        config = {}

        try:
            config['SQLALCHEMY_DATABASE_URI'] = self.validate_database_config()
            config['RATELIMIT_STORAGE_URI'] = self.validate_rate_limiting_config()
            config['CORS_ORIGINS'] = self.validate_cors_config()
            config['GAME_CONFIG_DIR'] = self.validate_game_config_dir()
            config.update(self.validate_rgs_config())

            config['DEFAULT_BALANCE'] = self.validate_money_setting('DEFAULT_BALANCE', '1000.00')
            config['PENNY_GAME_COST'] = self.validate_money_setting('PENNY_GAME_COST', '0.10')
            config['ACTION_GAME_COST'] = self.validate_money_setting('ACTION_GAME_COST', '0.00')
            config['BET_MATCH_EPSILON'] = self.validate_money_setting('BET_MATCH_EPSILON', '0.01')

            config['DEFAULT_GAME_ID'] = os.getenv('DEFAULT_GAME_ID', 'SnowKingdom')
            config['DEBUG'] = _env_flag('FLASK_DEBUG', 'False')
            config['HISTORY_ENABLED'] = _env_flag('HISTORY_ENABLED', 'True')
            config['HISTORY_ASYNC'] = _env_flag('HISTORY_ASYNC', 'True')

            if self.is_production and config['DEBUG']:
                self.errors.append("CRITICAL: DEBUG mode must be disabled in production (set FLASK_DEBUG=False)")

            if self.errors:
                error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in self.errors)
                if self.warnings:
                    error_msg += "\n\nWarnings:\n" + "\n".join(f"  - {warning}" for warning in self.warnings)
                raise ConfigValidationError(error_msg)

            for warning in self.warnings:
                warnings.warn(warning, UserWarning)

            return config

        except Exception as e:
            if isinstance(e, ConfigValidationError):
                raise
            raise ConfigValidationError(f"Configuration validation error: {str(e)}") from e


def validate_production_config() -> dict:
    """
    Validate configuration with fail-fast behavior.

    Returns:
        Dictionary of validated configuration values

    Raises:
        SystemExit: If validation fails during startup
    """
    try:
        validator = ConfigValidator()
        return validator.validate_all()
    except ConfigValidationError as e:
        print("\nCONFIGURATION VALIDATION FAILED\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print("\nSet the missing environment variables (see .env) and restart.", file=sys.stderr)
        print("\nApplication startup ABORTED\n", file=sys.stderr)
        sys.exit(1)
