# SQLAlchemy models
from .base import Base
from .user_state import UserStateRecord

__all__ = ["Base", "UserStateRecord"]
