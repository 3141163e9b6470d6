"""rekord-fixer: bulk fixes for a DJ library database."""

__version__ = "0.3.0"
