import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_login import LoginManager


# Initialize extensions
login_manager = LoginManager()


def configure_logging(app):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler (skipped when LOG_DIR is unset, e.g. in tests)
    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'sitebackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers)

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    for handler in handlers:
        app.logger.addHandler(handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, **overrides):
    """
    Flask application factory

    Args:
        config_name: Key into sitebackup.config.config (FLASK_ENV by default)
        **overrides: Configuration values applied after the config class
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from sitebackup.config import config
    app.config.from_object(config[config_name])
    app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    # Ensure required directories exist
    os.makedirs(app.config['TEMP_DIR'], exist_ok=True)

    # Initialize extensions
    login_manager.init_app(app)

    from sitebackup.auth import load_operator, load_user_from_request, unauthorized
    login_manager.user_loader(load_operator)
    login_manager.request_loader(load_user_from_request)
    login_manager.unauthorized_handler(unauthorized)

    if not app.config.get('BACKUP_OPERATOR_PASSWORD_HASH'):
        app.logger.warning("BACKUP_OPERATOR_PASSWORD_HASH is not set - backup downloads are disabled")

    # Register blueprints
    from sitebackup.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    app.logger.info(f"Backup root: {app.config['BACKUP_ROOT']}")

    return app
