"""
Centralized path configuration for explainit.

All runtime files live below one home directory so that sessions, the session
registry and application logs can be found again by ``resume``.
"""

import os
from pathlib import Path
from typing import Optional


class RuntimePaths:
    """Manages all runtime paths for the application."""

    def __init__(self, base_dir: Optional[str] = None):
        """
        Initialize runtime paths.

        Args:
            base_dir: Base directory for all runtime files.
                     Defaults to EXPLAINIT_HOME env var or the working directory
        """
        self.base_dir = Path(base_dir or os.getenv("EXPLAINIT_HOME", "."))

        self.output_dir = self.base_dir / "output"
        self.logs_dir = self.base_dir / "logs"

    def ensure_directories(self):
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(exist_ok=True)
        self.logs_dir.mkdir(exist_ok=True)

    def get_log_path(self, name: str = "explainit") -> Path:
        """Get path for an application log file."""
        return self.logs_dir / f"{name}.log"

    @classmethod
    def get_default(cls) -> 'RuntimePaths':
        """Get default runtime paths instance."""
        instance = cls()
        instance.ensure_directories()
        return instance
