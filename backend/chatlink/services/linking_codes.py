"""Linking code generation and inbound text parsing.

Codes are 8 uppercase hexadecimal characters (32 bits of entropy). Inbound
chat text is matched case-insensitively, either as the bare code or as the
argument of a ``/start`` deep-link command.
"""

import re
import secrets
from dataclasses import dataclass

CODE_LENGTH = 8

_CODE_RE = re.compile(r"^[A-F0-9]{8}$")
# "/start CODE" as sent by Telegram deep links; "/start@BotName CODE" in groups
_START_CODE_RE = re.compile(r"^/START(?:@\w+)?\s+([A-F0-9]{8})$")
_NUMERIC_ID_RE = re.compile(r"^\d+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{5,32}$")


def generate_code() -> str:
    """Generate a fresh linking code.

    Returns:
        8-character uppercase hex string.
    """
    return secrets.token_hex(CODE_LENGTH // 2).upper()


def normalize_code(raw: str) -> str | None:
    """Normalize a user-entered code.

    Args:
        raw: Code as typed (any case, surrounding whitespace allowed).

    Returns:
        The uppercase code, or None if it is not 8 hex characters.
    """
    candidate = raw.strip().upper()
    if _CODE_RE.match(candidate):
        return candidate
    return None


@dataclass(frozen=True)
class ParsedMessage:
    """Result of parsing one inbound chat message.

    Attributes:
        code: Extracted code, or None if the text carries no code.
        is_command: True if the text is a slash command (``/start``, ``/help``...).
    """

    code: str | None
    is_command: bool


def parse_message(text: str) -> ParsedMessage:
    """Extract a linking code from inbound chat text.

    Args:
        text: Raw message text.

    Returns:
        ParsedMessage with the code (if any) and whether the text is a command.
    """
    normalized = text.strip().upper()
    match = _START_CODE_RE.match(normalized)
    if match:
        return ParsedMessage(code=match.group(1), is_command=True)
    if _CODE_RE.match(normalized):
        return ParsedMessage(code=normalized, is_command=False)
    return ParsedMessage(code=None, is_command=normalized.startswith("/"))


@dataclass(frozen=True)
class TelegramTarget:
    """A chat the bot can push a code to.

    Attributes:
        chat_id: Value for sendMessage ``chat_id`` (numeric id or ``@username``).
        numeric_id: Numeric Telegram id when known up front, else None.
    """

    chat_id: str
    numeric_id: str | None


def parse_telegram_identifier(raw: str) -> TelegramTarget:
    """Parse a caller-supplied Telegram username or numeric id.

    Args:
        raw: ``@username``, ``username`` or a numeric id.

    Returns:
        TelegramTarget for sending.

    Raises:
        ValueError: If the identifier is neither a numeric id nor a valid
            username (5-32 letters, digits or underscores).
    """
    normalized = raw.strip().removeprefix("@")
    if _NUMERIC_ID_RE.match(normalized):
        return TelegramTarget(chat_id=normalized, numeric_id=normalized)
    if not _USERNAME_RE.match(normalized):
        msg = (
            "Invalid Telegram username format. Username must be 5-32 characters "
            "and contain only letters, numbers, and underscores."
        )
        raise ValueError(msg)
    return TelegramTarget(chat_id=f"@{normalized}", numeric_id=None)
