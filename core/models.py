from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Deliberately loose: something@something.tld. Shared by the store and the
# API request models so both layers reject the same inputs.
EMAIL_PATTERN = r"^.+@.+\..+$"


@dataclass
class Book:
    """A catalog entry saved to one user's list.

    book_id is the external catalog identifier; it is unique within one
    user's list but the same id may appear on many users' lists.
    """

    book_id: str
    title: str
    authors: list[str] = field(default_factory=list)
    description: str = ""
    image: Optional[str] = None
    link: Optional[str] = None
