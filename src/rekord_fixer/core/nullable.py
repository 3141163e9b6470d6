"""
Nullable scalar wrappers for database values.

Columns in the library database are frequently NULL. NullString and
NullInt64 keep the "is there a value" bit next to the value so that a NULL
read from one row is written back as NULL, not as "" or 0.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class NullString:
    """A string that may be database NULL."""

    value: str = ""
    valid: bool = False

    @classmethod
    def scan(cls, raw: Any) -> "NullString":
        """Build from a raw column value (str, bytes, int, float or None)."""
        if raw is None:
            return cls()
        if isinstance(raw, bytes):
            return cls(raw.decode("utf-8", errors="replace"), True)
        if isinstance(raw, (str, int, float)):
            return cls(str(raw), True)
        raise TypeError(f"Cannot scan {type(raw).__name__} into NullString")

    @classmethod
    def of(cls, value: Optional[str]) -> "NullString":
        return cls() if value is None else cls(value, True)

    def value_or_none(self) -> Optional[str]:
        """Value for use as a SQL parameter (None means NULL)."""
        return self.value if self.valid else None

    def __str__(self) -> str:
        return self.value if self.valid else ""


@dataclass(frozen=True)
class NullInt64:
    """An integer that may be database NULL."""

    value: int = 0
    valid: bool = False

    @classmethod
    def scan(cls, raw: Any) -> "NullInt64":
        """Build from a raw column value.

        Numeric strings are parsed; anything else that is not a number
        raises ValueError.
        """
        if raw is None:
            return cls()
        if isinstance(raw, bool):
            return cls(int(raw), True)
        if isinstance(raw, int):
            return cls(raw, True)
        if isinstance(raw, float):
            return cls(int(raw), True)
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if isinstance(raw, str):
            text = raw.strip()
            if not text:
                return cls()
            try:
                return cls(int(text), True)
            except ValueError:
                # Some columns hold "12.0"
                return cls(int(float(text)), True)
        raise TypeError(f"Cannot scan {type(raw).__name__} into NullInt64")

    @classmethod
    def of(cls, value: Optional[int]) -> "NullInt64":
        return cls() if value is None else cls(int(value), True)

    def value_or_none(self) -> Optional[int]:
        """Value for use as a SQL parameter (None means NULL)."""
        return self.value if self.valid else None

    def __str__(self) -> str:
        return str(self.value) if self.valid else ""
