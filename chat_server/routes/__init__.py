from chat_server.routes.user import user_bp
from chat_server.routes.conversation import conversation_bp
from chat_server.routes.message import message_bp

__all__ = ['user_bp', 'conversation_bp', 'message_bp']
