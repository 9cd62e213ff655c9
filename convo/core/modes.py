# convo/core/modes.py

from enum import Enum
from typing import Optional, Union


class RegenerationKind(str, Enum):
    TRY_AGAIN = "try-again"
    ADD_DETAIL = "add-detail"
    MORE_CONCISE = "more-concise"

    @property
    def instruction(self) -> str:
        return _INSTRUCTIONS[self]


_INSTRUCTIONS = {
    RegenerationKind.TRY_AGAIN: "(Please provide an alternative response to this request)",
    RegenerationKind.ADD_DETAIL: "(Please provide a more detailed and comprehensive response)",
    RegenerationKind.MORE_CONCISE: "(Please provide a more concise and succinct response)",
}


def parse_kind(value: Union[str, RegenerationKind, None]) -> Optional[RegenerationKind]:
    """
    Accept an enum member or its string value; anything else yields None.
    """
    if isinstance(value, RegenerationKind):
        return value
    try:
        return RegenerationKind((value or "").strip().lower())
    except ValueError:
        return None


def build_regeneration_prompt(basis: str, kind: RegenerationKind) -> str:
    """Inference-only text; it is never stored as a message."""
    return f"{basis}\n\n{kind.instruction}"
