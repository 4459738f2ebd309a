import os
import json
import tempfile


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # Sessions are not needed for Basic auth; a per-process key is enough
        import secrets
        SECRET_KEY = secrets.token_hex(32)

    # Operator account (HTTP Basic auth)
    BACKUP_OPERATOR_USERNAME = os.environ.get('BACKUP_OPERATOR_USERNAME') or 'admin'
    BACKUP_OPERATOR_PASSWORD_HASH = os.environ.get('BACKUP_OPERATOR_PASSWORD_HASH')

    # What to back up
    BACKUP_ROOT = os.environ.get('BACKUP_ROOT') or os.getcwd()
    BACKUP_EXCLUDE = os.environ.get('BACKUP_EXCLUDE', '')
    BACKUP_INCLUDE = os.environ.get('BACKUP_INCLUDE', '')
    BACKUP_IGNORED_NAMES = os.environ.get('BACKUP_IGNORED_NAMES', '')
    # JSON list: [{"name": "site", "host": "localhost", "user": "u", "password": "p"}]
    BACKUP_DATABASES = json.loads(os.environ.get('BACKUP_DATABASES') or '[]')

    # How to back up
    BACKUP_ARCHIVE_NAME_MASK = os.environ.get('BACKUP_ARCHIVE_NAME_MASK') or 'backup_%DATE%.zip'
    BACKUP_CLIENT_ENCODING = os.environ.get('BACKUP_CLIENT_ENCODING') or 'utf8'
    BACKUP_FS_FAIL_FAST = _env_flag('BACKUP_FS_FAIL_FAST', True)
    BACKUP_ENFORCE_TABLE_FILTERS = _env_flag('BACKUP_ENFORCE_TABLE_FILTERS', False)

    # Temp/logs
    TEMP_DIR = os.environ.get('TEMP_DIR') or tempfile.gettempdir()
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Test configuration"""
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'test-secret-key'
    LOG_DIR = None
    BACKUP_DATABASES = []


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
