"""Command schema.

A command is a raw instruction string plus the category and approval
requirement derived from its prefix token.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CommandCategory(str, Enum):
    """Category assigned by the prefix classifier."""

    MANUAL = "manual"  # ask: always needs a human
    COMMIT = "commit"
    DEPLOY = "deploy"
    FEATURE = "feature"
    UNCLASSIFIED = "unclassified"


class Command(BaseModel):
    """A classified instruction.

    Transient: created per invocation and discarded once logged.
    """

    model_config = ConfigDict(frozen=True)

    raw_text: str = Field(..., description="Instruction exactly as submitted")
    prefix: str | None = Field(
        None,
        description="Trimmed token before the first ':' (None when there is no colon)",
    )
    body: str = Field("", description="Text after the first ':' (whole text without a colon)")
    category: CommandCategory = Field(..., description="Classifier category")
    requires_approval: bool = Field(..., description="Whether the gate must wait for a human")
