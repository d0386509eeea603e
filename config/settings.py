"""Application configuration settings.

Values are layered, later sources winning:
1. config.base.yaml (shared defaults)
2. config.{env}.yaml (environment-specific: dev, staging, prod)
3. config.local.yaml (local overrides, git-ignored)
4. Environment variables

Usage:
    from config.settings import config

    secret = config.JWT_SECRET
    window = config.RETRACTION_WINDOW_SECONDS
"""
import os
from pathlib import Path
from typing import Optional, Any, Dict
import yaml


ENV_ALIASES = {
    'dev': 'development',
    'development': 'development',
    'staging': 'staging',
    'stage': 'staging',
    'prod': 'production',
    'production': 'production',
}

ENV_FILES = {
    'development': 'config.dev.yaml',
    'staging': 'config.staging.yaml',
    'production': 'config.prod.yaml',
}

DEFAULT_ENV = 'development'
TRUTHY = ('1', 'true', 'yes')


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name, '').lower()
    if not raw:
        return None
    return raw in TRUTHY


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    return int(raw) if raw else None


class Config:
    """Centralized application configuration.

    The environment comes from FLASK_ENV, then APP_ENV, defaulting to
    development. YAML is read once per process; call ``reload()`` after
    changing the environment in tests.
    """

    _config_data: Dict[str, Any] = {}
    _loaded: bool = False
    _current_env: str = DEFAULT_ENV

    def __init__(self):
        if not Config._loaded:
            self._load_config()

    @classmethod
    def _get_environment(cls) -> str:
        env = (os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or DEFAULT_ENV).lower().strip()
        return ENV_ALIASES.get(env, DEFAULT_ENV)

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _load_config(self):
        config_dir = Path(__file__).parent
        Config._current_env = self._get_environment()

        data = self._read_yaml(config_dir / 'config.base.yaml')
        for name in (ENV_FILES.get(Config._current_env, 'config.dev.yaml'), 'config.local.yaml'):
            data = self._deep_merge(data, self._read_yaml(config_dir / name))

        Config._config_data = data
        Config._loaded = True

    def _deep_merge(self, base: dict, override: dict) -> dict:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _get_yaml_value(self, *keys, default=None) -> Any:
        """Walk nested YAML keys, returning ``default`` at the first missing one."""
        value = Config._config_data
        for key in keys:
            if not isinstance(value, dict):
                return default
            value = value.get(key)
            if value is None:
                return default
        return value

    @classmethod
    def reload(cls):
        cls._loaded = False
        cls._config_data = {}
        return cls()

    # ==========================================================================
    # Environment
    # ==========================================================================

    @property
    def ENV(self) -> str:
        return Config._current_env

    @property
    def IS_DEV(self) -> bool:
        return Config._current_env == 'development'

    @property
    def IS_PROD(self) -> bool:
        return Config._current_env == 'production'

    # ==========================================================================
    # Application
    # ==========================================================================

    @property
    def DEBUG(self) -> bool:
        env_val = _env_bool('FLASK_DEBUG')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('app', 'debug', default=False)

    @property
    def HOST(self) -> str:
        return os.getenv('HOST') or self._get_yaml_value('app', 'host', default='0.0.0.0')

    @property
    def PORT(self) -> int:
        return _env_int('PORT') or self._get_yaml_value('app', 'port', default=5000)

    @property
    def APP_NAME(self) -> str:
        return os.getenv('APP_NAME') or self._get_yaml_value('app', 'name', default='Chat Engine API')

    @property
    def APP_VERSION(self) -> str:
        return self._get_yaml_value('app', 'version', default='1.0.0')

    @property
    def SOCKETIO_ASYNC_MODE(self) -> Optional[str]:
        """Flask-SocketIO async mode; None lets the library pick."""
        return os.getenv('SOCKETIO_ASYNC_MODE') or self._get_yaml_value('socketio', 'async_mode')

    # ==========================================================================
    # Security
    # ==========================================================================

    @property
    def JWT_SECRET(self) -> Optional[str]:
        """JWT signing secret. Required in production."""
        secret = os.getenv('JWT_SECRET') or self._get_yaml_value('security', 'jwt', 'secret')
        if not secret and self.IS_DEV:
            return 'dev-secret-change-me'
        return secret

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv('JWT_ALGORITHM') or self._get_yaml_value('security', 'jwt', 'algorithm', default='HS256')

    @property
    def ACCESS_TOKEN_EXPIRE_MINUTES(self) -> int:
        return (_env_int('ACCESS_TOKEN_MINUTES')
                or self._get_yaml_value('security', 'jwt', 'access_token_expire_minutes', default=10080))

    # ==========================================================================
    # Database
    # ==========================================================================

    @property
    def MONGO_URI(self) -> str:
        return os.getenv('MONGO_URI') or self._get_yaml_value('database', 'mongo_uri', default='mongodb://localhost:27017')

    @property
    def MONGO_DB_NAME(self) -> str:
        return os.getenv('MONGO_DB_NAME') or self._get_yaml_value('database', 'name', default='chat_db')

    # ==========================================================================
    # CORS
    # ==========================================================================

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv('CORS_ORIGINS') or self._get_yaml_value('cors', 'origins', default='*')

    @property
    def CORS_ORIGINS_LIST(self) -> list:
        origins = self.CORS_ORIGINS
        if origins == '*':
            return ['*']
        return [o.strip() for o in origins.split(',') if o.strip()]

    # ==========================================================================
    # Messaging rules
    # ==========================================================================

    @property
    def RETRACTION_WINDOW_SECONDS(self) -> int:
        """How long after sending a message its sender may delete it for everyone."""
        env_val = _env_int('RETRACTION_WINDOW_SECONDS')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('messaging', 'retraction_window_seconds', default=600)

    @property
    def DELETED_PLACEHOLDER(self) -> str:
        return self._get_yaml_value('messaging', 'deleted_placeholder', default='This message was deleted')

    @property
    def ENFORCE_BLOCK_ON_SEND(self) -> bool:
        """Reject sends into a blocked direct conversation."""
        env_val = _env_bool('ENFORCE_BLOCK_ON_SEND')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('messaging', 'enforce_block_on_send', default=False)

    @property
    def DEFAULT_PAGE_SIZE(self) -> int:
        return self._get_yaml_value('messaging', 'default_page_size', default=50)

    @property
    def MAX_PAGE_SIZE(self) -> int:
        return self._get_yaml_value('messaging', 'max_page_size', default=200)

    # ==========================================================================
    # Logging
    # ==========================================================================

    @property
    def LOG_LEVEL(self) -> str:
        env_val = os.getenv('LOG_LEVEL')
        if env_val:
            return env_val.upper()
        if self.LOG_DEBUG:
            return 'DEBUG'
        return self._get_yaml_value('logging', 'level', default='INFO')

    @property
    def LOG_DEBUG(self) -> bool:
        env_val = _env_bool('LOG_DEBUG')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('logging', 'debug', default=False)

    @property
    def LOG_DATE_FORMAT(self) -> str:
        return self._get_yaml_value('logging', 'date_format', default='%H:%M:%S')

    @property
    def LOG_FORMAT(self) -> str:
        """Explicit ``logging.pattern`` if set, else built from the include_* switches."""
        pattern = os.getenv('LOG_PATTERN') or self._get_yaml_value('logging', 'pattern')
        if pattern:
            return pattern

        parts = []
        if self._get_yaml_value('logging', 'include_datetime', default=True):
            parts.append('%(asctime)s')
        if self._get_yaml_value('logging', 'include_name', default=False):
            parts.append('%(name)s')
        if self._get_yaml_value('logging', 'include_level', default=True):
            parts.append('%(levelname)s')
        parts.append('%(message)s')
        return ' - '.join(parts)

    # ==========================================================================
    # Validation / export
    # ==========================================================================

    def validate_required(self) -> None:
        """Raise RuntimeError when production is missing settings it cannot run without."""
        errors = []

        if self.IS_PROD:
            if not self.JWT_SECRET:
                errors.append('JWT_SECRET environment variable is required in production')
            if not self.MONGO_URI or self.MONGO_URI == 'mongodb://localhost:27017':
                errors.append('MONGO_URI should be set to production database in production')
            if self.CORS_ORIGINS == '*':
                errors.append('CORS_ORIGINS should not be "*" in production')

        if self.RETRACTION_WINDOW_SECONDS < 0:
            errors.append('messaging.retraction_window_seconds must not be negative')
        if self.DEFAULT_PAGE_SIZE > self.MAX_PAGE_SIZE:
            errors.append('messaging.default_page_size must not exceed max_page_size')

        if errors:
            raise RuntimeError('Configuration errors:\n' + '\n'.join(f'  - {e}' for e in errors))

    def to_dict(self) -> Dict[str, Any]:
        """Current configuration with secrets masked, for the startup log."""
        return {
            'environment': self.ENV,
            'app': {
                'debug': self.DEBUG,
                'host': self.HOST,
                'port': self.PORT,
                'name': self.APP_NAME,
                'version': self.APP_VERSION,
            },
            'security': {
                'jwt_algorithm': self.JWT_ALGORITHM,
                'access_token_expire_minutes': self.ACCESS_TOKEN_EXPIRE_MINUTES,
                'jwt_secret_set': bool(self.JWT_SECRET),
            },
            'database': {
                'mongo_uri': '***' if self.MONGO_URI else None,
                'name': self.MONGO_DB_NAME,
            },
            'cors': {'origins': self.CORS_ORIGINS},
            'messaging': {
                'retraction_window_seconds': self.RETRACTION_WINDOW_SECONDS,
                'enforce_block_on_send': self.ENFORCE_BLOCK_ON_SEND,
                'default_page_size': self.DEFAULT_PAGE_SIZE,
                'max_page_size': self.MAX_PAGE_SIZE,
            },
            'logging': {'level': self.LOG_LEVEL},
        }


config = Config()


def get_env() -> str:
    return config.ENV


def is_dev() -> bool:
    return config.IS_DEV


def is_prod() -> bool:
    return config.IS_PROD
