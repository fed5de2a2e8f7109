#!/usr/bin/env python

"""
    User directory for Kitroom.

    Users are owned by the identity provider; Kitroom keeps a local row per
    user id so requests, loans and penalties have someone to point at.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from sqlalchemy.exc import IntegrityError
from kitroom.core.db import atomic
from kitroom.core.models import User
from kitroom.core.auth import normalize_role
from kitroom.core.exceptions import ValidationError, NotFoundError, ConflictError

logger = logging.getLogger(__name__)


class UserDirectory:

    @classmethod
    def get(cls, db, user_id):
        if user := db.get(User, user_id):
            return user
        raise NotFoundError(f"User {user_id} not found.")

    @classmethod
    def ensure_user(cls, db, user_id, email=None, name=None, surname=None,
                    role=None, course=None):
        """Creates the user's row, or brings its profile up to date.

        Fields left as None keep their stored value. A new row needs an email.
        """
        profile = {'email': email, 'name': name, 'surname': surname,
                   'role': normalize_role(role) if role is not None else None,
                   'course': course}
        if profile['email'] is not None:
            profile['email'] = profile['email'].strip().lower()
            if not profile['email']:
                raise ValidationError("Email cannot be blank.")
        profile = {k: v for k, v in profile.items() if v is not None}

        user = db.get(User, user_id)
        if user is not None and all(getattr(user, k) == v for k, v in profile.items()):
            return user
        if user is None and 'email' not in profile:
            raise ValidationError(f"User {user_id} is new and needs an email address.")

        try:
            with atomic(db):
                if user is None:
                    user = User(id=user_id, **profile)
                    db.add(user)
                else:
                    for k, v in profile.items():
                        setattr(user, k, v)
        except IntegrityError:
            # Another request created this user first
            if (existing := db.get(User, user_id)) is not None and \
                    existing.email == profile.get('email', existing.email):
                return existing
            raise ConflictError(f"Email {profile.get('email')} belongs to another user.")
        logger.info(f"user {user_id} profile saved")
        return user
