"""
Request hardening helpers: the shared rate limiter and response security headers
"""
from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)


def play_rate_limit():
    """Per-IP limit applied to spin endpoints, read from PLAY_RATE_LIMIT"""
    return current_app.config.get('PLAY_RATE_LIMIT', "120 per minute")


def secure_headers(response):
    """Add security headers to response"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Cache-Control'] = 'no-store'
    return response
