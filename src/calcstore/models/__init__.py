from .user import User
from .named_session import NamedSession

__all__ = ["User", "NamedSession"]
