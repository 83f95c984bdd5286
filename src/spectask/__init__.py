"""spectask: keep tasks.md files in sync with an interactive client."""

from spectask.config import VERSION

__version__ = VERSION
