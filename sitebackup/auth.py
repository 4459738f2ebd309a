"""
Authentication for the backup endpoints.

A single operator account is configured through BACKUP_OPERATOR_USERNAME and
BACKUP_OPERATOR_PASSWORD_HASH. Requests authenticate with HTTP Basic
credentials, checked by the Flask-Login request loader.
"""

from typing import Optional

from flask import current_app, jsonify
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash


def hash_password(password: str) -> str:
    """
    Hash a password using werkzeug's pbkdf2:sha256.

    Args:
        password: Plain text password

    Returns:
        Hashed password string
    """
    return generate_password_hash(password, method='pbkdf2:sha256')


def verify_password(password_hash: str, password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        password_hash: Stored password hash
        password: Plain text password to verify

    Returns:
        True if password matches, False otherwise
    """
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


class OperatorUser(UserMixin):
    """
    Flask-Login user for the configured backup operator.
    """

    def __init__(self, username: str):
        self.username = username

    def get_id(self):
        """Return the username as required by Flask-Login."""
        return self.username


def load_operator(username: str) -> Optional[OperatorUser]:
    """Session user loader: only the configured operator exists."""
    configured = current_app.config.get('BACKUP_OPERATOR_USERNAME')
    if configured and username == configured:
        return OperatorUser(username)
    return None


def load_user_from_request(request) -> Optional[OperatorUser]:
    """
    Authenticate a request from its HTTP Basic credentials.

    Returns:
        OperatorUser if the credentials match the configured operator, else None
    """
    auth = request.authorization
    if auth is None or not auth.username:
        return None

    configured = current_app.config.get('BACKUP_OPERATOR_USERNAME')
    password_hash = current_app.config.get('BACKUP_OPERATOR_PASSWORD_HASH')

    if not configured or auth.username != configured:
        return None
    if not verify_password(password_hash, auth.password or ''):
        return None

    return OperatorUser(auth.username)


def unauthorized():
    """Reply 401 with a Basic challenge instead of redirecting to a login page."""
    response = jsonify({'error': 'Authentication required'})
    response.status_code = 401
    response.headers['WWW-Authenticate'] = 'Basic realm="sitebackup"'
    return response
