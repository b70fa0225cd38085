from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lend_and_learn.models.lending_models import User
from lend_and_learn.services.directory_service import DirectoryError
from lend_and_learn.services.exceptions import Unauthorized


USERS_LOGGER = logging.getLogger("lend_and_learn.users")


class ProfileDirectory(Protocol):
    def fetch_profile(self, access_token: str, username: str) -> dict[str, str] | None:
        ...


def find_user(db: Session, username: str | None) -> User | None:
    if not username:
        return None
    return db.execute(select(User).where(User.Username == username)).scalars().first()


def add_new_user(db: Session, username: str, first_name: str, last_name: str, email: str) -> User:
    user = User(
        Username=username,
        FirstName=first_name or "",
        LastName=last_name or "",
        Email=email or "",
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    USERS_LOGGER.info("create user success | user_id=%s | username=%s", user.UserID, user.Username)
    return user


def resolve_or_create_user(
    db: Session,
    directory: ProfileDirectory,
    access_token: str,
    username: str | None,
) -> User | None:
    """Return the stored user for ``username``, creating it from the directory on first sight.

    An existing user is returned as stored; the directory is only consulted on a
    miss. A directory failure surfaces as :class:`Unauthorized`.
    """
    if not username:
        return None
    user = find_user(db, username)
    if user is not None:
        return user

    try:
        profile = directory.fetch_profile(access_token, username)
    except DirectoryError as exc:
        USERS_LOGGER.warning("resolve user failed | username=%s | reason=directory_error", username)
        raise Unauthorized() from exc
    if not profile:
        USERS_LOGGER.warning("resolve user failed | username=%s | reason=directory_empty", username)
        return None
    # The directory may spell the name differently from the login.
    existing = find_user(db, profile["username"])
    if existing is not None:
        return existing
    return add_new_user(
        db,
        profile["username"],
        profile.get("firstName", ""),
        profile.get("lastName", ""),
        profile.get("preferredEmail", ""),
    )


def refresh_user_profile(
    db: Session,
    directory: ProfileDirectory,
    username: str,
    auth_username: str,
    access_token: str,
) -> User | None:
    # Unlike resolve_or_create_user, an unknown user is not created here.
    if username != auth_username:
        USERS_LOGGER.warning("refresh profile rejected | username=%s | auth=%s | reason=not_self", username, auth_username)
        raise Unauthorized()

    try:
        profile = directory.fetch_profile(access_token, username)
    except DirectoryError as exc:
        USERS_LOGGER.warning("refresh profile failed | username=%s | reason=directory_error", username)
        raise Unauthorized() from exc
    if not profile:
        USERS_LOGGER.warning("refresh profile failed | username=%s | reason=directory_empty", username)
        raise Unauthorized()

    user = find_user(db, username)
    if user is None:
        return None

    try:
        user.FirstName = profile.get("firstName", "")
        user.LastName = profile.get("lastName", "")
        user.Username = profile["username"]
        user.Email = profile.get("preferredEmail", "")
        user.UpdatedDate = datetime.now()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        USERS_LOGGER.warning("refresh profile failed | username=%s | reason=store_error", username)
        raise Unauthorized() from exc
    db.refresh(user)
    USERS_LOGGER.info("refresh profile success | user_id=%s | username=%s", user.UserID, user.Username)
    return user


def serialize_user(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": user.UserID,
        "username": user.Username,
        "firstName": user.FirstName,
        "lastName": user.LastName,
        "email": user.Email,
    }
