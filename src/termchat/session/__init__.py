from termchat.session.session_config import SessionConfig
from termchat.session.session_manager import SessionManager

__all__ = [
    "SessionConfig",
    "SessionManager",
]
