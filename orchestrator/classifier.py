"""Prefix-based command classifier.

Maps a raw instruction to a category and an approval requirement using a
small ordered table; the first exact token match wins and the last row is
the default.
"""

from schemas.command import Command, CommandCategory

from .errors import InvalidCommand

# (exact token, category, requires approval). Tokens are case-sensitive.
PREFIX_TABLE: list[tuple[str, CommandCategory, bool]] = [
    ("ask", CommandCategory.MANUAL, True),
    ("commit", CommandCategory.COMMIT, False),
    ("deploy", CommandCategory.DEPLOY, False),
    ("feature", CommandCategory.FEATURE, False),
]

DEFAULT_ROW: tuple[CommandCategory, bool] = (CommandCategory.UNCLASSIFIED, False)


def validate_command_text(raw: object) -> str:
    """Reject text that must never reach the gate.

    Raises:
        InvalidCommand: If the text is not a string, is blank, or contains NUL.
    """
    if not isinstance(raw, str):
        raise InvalidCommand(f"Command must be a string, got {type(raw).__name__}")
    if not raw.strip():
        raise InvalidCommand("Command text is empty")
    if "\x00" in raw:
        raise InvalidCommand("Command text contains a NUL character")
    return raw


def split_prefix(raw: str) -> tuple[str | None, str]:
    """Split text on the first ':' into (trimmed prefix, body)."""
    head, sep, tail = raw.partition(":")
    if not sep:
        return None, raw.strip()
    return head.strip(), tail.strip()


def classify(raw: str) -> Command:
    """Classify a raw instruction.

    Args:
        raw: Instruction text, e.g. ``"ask: delete production database"``

    Returns:
        Command with category and approval requirement

    Raises:
        InvalidCommand: For empty or malformed text
    """
    raw = validate_command_text(raw)
    prefix, body = split_prefix(raw)

    category, requires_approval = DEFAULT_ROW
    if prefix is not None:
        for token, row_category, row_approval in PREFIX_TABLE:
            if prefix == token:
                category, requires_approval = row_category, row_approval
                break

    return Command(
        raw_text=raw,
        prefix=prefix,
        body=body,
        category=category,
        requires_approval=requires_approval,
    )
