"""
Session authentication for the fambudget API, built on Flask-Login.

This module provides:
- The Flask-Login User model (id, email, name, role)
- SessionController: login manager setup, user loader, JSON 401 handler
- role_required: decorator limiting a route to some family roles

Usage:
    session_ctrl = SessionController(app, services.auth)

    @app.route('/api/users')
    @login_required
    @role_required('admin')
    def list_users():
        ...
"""

from functools import wraps

from flask import jsonify, session
from flask_login import LoginManager, UserMixin, current_user, login_user, logout_user

from .errors import NotFoundError
from .log import get_logger

logger = get_logger(__name__)


class User(UserMixin):
    """User model for Flask-Login."""

    def __init__(self, id, email, name, role):
        self.id = id
        self.email = email
        self.name = name
        self.role = role

    @classmethod
    def from_record(cls, record):
        return cls(id=str(record["id"]), email=record["email"], name=record["name"], role=record["role"])

    @property
    def user_id(self):
        return int(self.id)

    @property
    def is_admin(self):
        return self.role == "admin"


class SessionController:
    """
    Manages user sessions for the Flask app.

    The user record is reloaded from the database on each request, so a role
    change or deletion takes effect immediately.
    """

    def __init__(self, app, auth_service, session_config=None):
        self.app = app
        self.auth = auth_service
        self.login_manager = LoginManager()

        self._configure_session(session_config)
        self._init_login_manager()

    def _configure_session(self, session_config=None):
        """Configure session cookie security settings."""
        if session_config is None:
            session_config = {
                "SESSION_COOKIE_SAMESITE": "Lax",
                "SESSION_COOKIE_SECURE": False,
                "SESSION_COOKIE_HTTPONLY": True,
            }

        for key, value in session_config.items():
            self.app.config[key] = value

    def _init_login_manager(self):
        self.login_manager.init_app(self.app)

        @self.login_manager.user_loader
        def load_user(user_id):
            try:
                return User.from_record(self.auth.get_user(int(user_id)))
            except (NotFoundError, ValueError):
                return None

        @self.login_manager.unauthorized_handler
        def unauthorized():
            return jsonify(success=False, message="Authorization required. Please log in."), 401

    def login(self, record, remember=False):
        user = User.from_record(record)
        login_user(user, remember=remember)
        return user

    def logout(self):
        """Log out the current user and clear session."""
        logout_user()
        session.clear()


def role_required(*roles):
    """Reject the request with 403 unless the logged-in user has one of `roles`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"success": False, "message": "Authentication required"}), 401
            if current_user.role not in roles:
                logger.info("role_denied", user_id=current_user.id, role=current_user.role, required=list(roles))
                return jsonify({"success": False, "message": "insufficient permissions"}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
