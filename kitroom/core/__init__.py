#!/usr/bin/env python

"""
    Core module for Kitroom, db & lending engines

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

from kitroom.core import db as database
from kitroom.core import models

db = database.init()

__all__ = ["db", "database", "models"]
