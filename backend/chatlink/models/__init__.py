"""SQLAlchemy ORM models for chatlink.

All models are exported from this module for convenient imports:
    from chatlink.models import User, TelegramLinkSession

Models:
- user.py: User (account with nullable, unique telegram_id)
- telegram_link_session.py: TelegramLinkSession (pending linking attempt)
"""

from chatlink.models.base import Base, TimestampMixin
from chatlink.models.telegram_link_session import TelegramLinkSession
from chatlink.models.user import User

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Accounts
    "User",
    # Linking
    "TelegramLinkSession",
]
