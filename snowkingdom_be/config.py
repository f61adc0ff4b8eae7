"""
Configuration module with fail-fast validation.

Values are read from the environment (a local .env file is loaded first) and
validated once at import time by `config_validator`.
"""
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from snowkingdom_be.config_validator import validate_production_config


class Config:
    """Runtime configuration."""

    _validated_config = validate_production_config()

    # Database Configuration (spin history)
    SQLALCHEMY_DATABASE_URI = _validated_config['SQLALCHEMY_DATABASE_URI']
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Rate Limiting
    RATELIMIT_STORAGE_URI = _validated_config['RATELIMIT_STORAGE_URI']
    RATELIMIT_DEFAULT_LIMITS = os.getenv('RATELIMIT_DEFAULT_LIMITS', "200 per day;50 per hour")
    PLAY_RATE_LIMIT = os.getenv('PLAY_RATE_LIMIT', "120 per minute")

    DEBUG = _validated_config['DEBUG']

    # CORS Configuration
    CORS_ORIGINS_LIST = _validated_config['CORS_ORIGINS']

    # Game settings
    DEFAULT_GAME_ID = _validated_config['DEFAULT_GAME_ID']
    GAME_CONFIG_DIR = _validated_config['GAME_CONFIG_DIR']
    DEFAULT_BALANCE = _validated_config['DEFAULT_BALANCE']
    PENNY_GAME_COST = _validated_config['PENNY_GAME_COST']
    ACTION_GAME_COST = _validated_config['ACTION_GAME_COST']
    BET_MATCH_EPSILON = _validated_config['BET_MATCH_EPSILON']

    # Collaborators
    HISTORY_ENABLED = _validated_config['HISTORY_ENABLED']
    HISTORY_ASYNC = _validated_config['HISTORY_ASYNC']
    RGS_ENABLED = _validated_config['RGS_ENABLED']
    RGS_URL = _validated_config['RGS_URL']
    RGS_TIMEOUT_SECONDS = _validated_config['RGS_TIMEOUT_SECONDS']


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Disable rate limiting for tests
    RATELIMIT_ENABLED = False
    RATELIMIT_DEFAULT_LIMITS_ENABLED = False
    # Record history inline so tests can query it right after a request
    HISTORY_ENABLED = True
    HISTORY_ASYNC = False
    RGS_ENABLED = False
    GAME_CONFIG_DIR = None
    DEFAULT_GAME_ID = 'SnowKingdom'
    DEFAULT_BALANCE = Decimal('1000.00')
    PENNY_GAME_COST = Decimal('0.10')
    ACTION_GAME_COST = Decimal('0.00')
    BET_MATCH_EPSILON = Decimal('0.01')
    SQLALCHEMY_ENGINE_OPTIONS = {
        'connect_args': {'check_same_thread': False}
    }
