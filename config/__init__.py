"""Configuration package.

    from config import config

    config.MONGO_URI
    config.RETRACTION_WINDOW_SECONDS

Select the environment with FLASK_ENV or APP_ENV (development, staging, production).
"""
from .settings import config, Config, is_dev, is_prod, get_env

__all__ = ['config', 'Config', 'is_dev', 'is_prod', 'get_env']
