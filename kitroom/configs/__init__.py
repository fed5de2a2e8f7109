#!/usr/bin/env python

"""
    Configurations for Kitroom

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import os


# Determine environment
TESTING = os.getenv("TESTING", "false").lower() == "true"

# API server configuration
SCHEME = 'http'
HOST = os.environ.get('KITROOM_HOST', 'localhost')
PORT = int(os.environ.get('KITROOM_PORT', 8080))
WORKERS = int(os.environ.get('KITROOM_WORKERS', 1))
DEBUG = bool(int(os.environ.get('KITROOM_DEBUG', 0)))
LOG_LEVEL = os.environ.get('KITROOM_LOG_LEVEL', 'info')
SSL_CRT = os.environ.get('KITROOM_SSL_CRT')
SSL_KEY = os.environ.get('KITROOM_SSL_KEY')
CORS_ORIGINS = os.environ.get('KITROOM_CORS_ORIGINS', 'http://localhost:3000').split(',')

# Signs the bearer tokens carrying {user_id, role, course}
SEED = os.environ.get('KITROOM_SEED', 'kitroom-dev-seed')
TOKEN_TTL = int(os.environ.get('KITROOM_TOKEN_TTL', 604800))

# Outbound notifications (mail relay webhook); empty means log only
NOTIFY_URL = os.environ.get('KITROOM_NOTIFY_URL', '')
NOTIFY_TIMEOUT = float(os.environ.get('KITROOM_NOTIFY_TIMEOUT', 5))
KITROOM_HTTP_HEADERS = {"User-Agent": "KitroomNotifier/1.0"}

# Lending policy
EXTERNAL_MAX_DAYS = int(os.environ.get('KITROOM_EXTERNAL_MAX_DAYS', 3))
BLOCK_THRESHOLD = int(os.environ.get('KITROOM_BLOCK_THRESHOLD', 3))
LOW_STOCK_THRESHOLD = int(os.environ.get('KITROOM_LOW_STOCK_THRESHOLD', 1))

# Consistency sweeper
SWEEP_INTERVAL = int(os.environ.get('KITROOM_SWEEP_INTERVAL', 900))

OPTIONS = {
    'host': HOST,
    'port': PORT,
    'log_level': LOG_LEVEL,
    'reload': DEBUG,
    'workers': WORKERS,
}
if SSL_CRT and SSL_KEY:
    OPTIONS['ssl_keyfile'] = SSL_KEY
    OPTIONS['ssl_certfile'] = SSL_CRT
    SCHEME = 'https'

DB_CONFIG = {
    'user': os.environ.get('DB_USER', 'postgres'),
    'password': os.environ.get('DB_PASSWORD'),
    'host': os.environ.get('DB_HOST', 'localhost'),
    'port': int(os.environ.get('DB_PORT', '5432')),
    'dbname': os.environ.get('DB_NAME', 'kitroom'),
}

# Database configuration
DB_URI = (
    "sqlite:///:memory:" if TESTING else
    'postgresql+psycopg2://{user}:{password}@{host}:{port}/{dbname}'.format(**DB_CONFIG)
)

__all__ = [
    'SCHEME', 'HOST', 'PORT', 'DEBUG', 'LOG_LEVEL', 'OPTIONS', 'DB_URI',
    'DB_CONFIG', 'TESTING', 'SEED', 'TOKEN_TTL', 'NOTIFY_URL',
    'NOTIFY_TIMEOUT', 'EXTERNAL_MAX_DAYS', 'BLOCK_THRESHOLD',
    'LOW_STOCK_THRESHOLD', 'SWEEP_INTERVAL', 'CORS_ORIGINS',
]
