# Overview: Service-layer operations for auth; registration, credential checks, password hashing.

"""
Authentication Service

Uses bcrypt for password hashing and validates password strength at
registration. Token issuance and refresh sessions live in session_service.py.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Login failures never reveal whether the email exists
"""

import re

import bcrypt
from flask import current_app

from ..errors import AuthError, ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..time_utils import utcnow
from .concurrency import commit_unit


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() compares in constant time.
    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def find_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter_by(email=email.strip().lower()).first()


def register_user(name: str, email: str, password: str, role: str = "user") -> User:
    """
    Create a new account.

    Raises:
        PasswordValidationError: weak password
        ConflictError: email already registered
    """
    email = email.strip().lower()
    if find_user_by_email(email):
        raise ConflictError("Email is already registered")

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role,
        status="active",
        created_at=utcnow(),
    )
    db.session.add(user)
    commit_unit("register user")

    current_app.logger.info("Registered user %s (role=%s)", user.id, user.role)
    return user


def authenticate(email: str, password: str) -> User:
    """
    Verify credentials and stamp last_login_at.

    Raises AuthError for unknown email, wrong password or inactive account.
    """
    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        raise ValidationError("Email and password are required")

    user = find_user_by_email(email)
    if not user or not verify_password(password, user.password_hash):
        raise AuthError("Invalid email or password")

    if not user.is_active:
        raise AuthError("Account is inactive")

    user.last_login_at = utcnow()
    commit_unit("record login")
    return user
