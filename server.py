import argparse
import logging

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from config import config
from chat_server import __version__
from chat_server.context import AppContext, ChatSettings
from chat_server.repository.mongo_helper import get_db
from chat_server.routes import user_bp, conversation_bp, message_bp
from chat_server.security.authentication import AuthSecurity
from chat_server.utils.helpers import respond_success
from chat_server.websocket.hub import WebSocketHub

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT, datefmt=config.LOG_DATE_FORMAT)
    # engineio/socketio are chatty at INFO
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)


def configure_auth_from_config():
    """Configure AuthSecurity from config (JWT_SECRET, JWT_ALGORITHM, ACCESS_TOKEN_MINUTES)."""
    secret = config.JWT_SECRET
    if not secret:
        raise RuntimeError('JWT_SECRET is required')
    AuthSecurity.configure(
        secret_key=secret,
        algorithm=config.JWT_ALGORITHM,
        access_token_expire_minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES,
    )


def create_app(context: AppContext = None, socketio: SocketIO = None) -> Flask:
    """Application factory used by server.py and tests.

    Without a ``context`` one is built against the configured MongoDB. The
    Socket.IO server is attached to the app and returned on ``app.socketio``.
    """
    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS_LIST)

    app.register_blueprint(user_bp)
    app.register_blueprint(conversation_bp)
    app.register_blueprint(message_bp)

    if context is None:
        context = AppContext(get_db(config.MONGO_URI, config.MONGO_DB_NAME), ChatSettings.from_config(config))
    context.init_app(app)

    if socketio is None:
        socketio = SocketIO(async_mode=config.SOCKETIO_ASYNC_MODE)
    cors_origins = config.CORS_ORIGINS_LIST
    socketio.init_app(app, cors_allowed_origins='*' if cors_origins == ['*'] else cors_origins)
    WebSocketHub(socketio, context).init_app(app)
    app.socketio = socketio

    @app.route('/health')
    def health():
        return respond_success({'data': {'name': config.APP_NAME, 'version': __version__}})

    return app


def parse_args():
    parser = argparse.ArgumentParser(description='Run the chat backend (REST + Socket.IO)')
    parser.add_argument('--host', default=config.HOST, help='Interface to bind (default: app.host or HOST env)')
    parser.add_argument('--port', type=int, default=config.PORT, help='TCP port to bind (default: app.port or PORT env)')
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    configure_logging()
    config.validate_required()
    configure_auth_from_config()
    logger.info('Configuration: %s', config.to_dict())
    app = create_app()
    logger.info('Starting server with Socket.IO on %s:%s', args.host, args.port)
    app.socketio.run(app, host=args.host, port=args.port, debug=config.DEBUG, allow_unsafe_werkzeug=True)
