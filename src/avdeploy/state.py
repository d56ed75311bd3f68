"""
Deployment State Module

Remembers values entered in earlier runs in a JSON parameter file so the
operator does not have to type them again.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "deployment-info.inf"


class DeploymentState:
    """Key/value store backed by a JSON file."""

    def __init__(self, path: Optional[str] = None):
        """
        Initialize the DeploymentState.

        Args:
            path: Path of the parameter file
        """
        self.path = Path(path or DEFAULT_STATE_FILE)
        self.values: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        """Read saved values; a missing file means a first run."""
        if not self.path.exists():
            self.values = {}
            return self.values

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            data = {}

        self.values = data if isinstance(data, dict) else {}
        return self.values

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any):
        if value is not None:
            self.values[key] = value

    def update(self, values: Dict[str, Any]):
        for key, value in values.items():
            self.set(key, value)

    def save(self):
        """Write all values back to the parameter file."""
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self.values, f, indent=2, sort_keys=True)
        logger.debug("Saved deployment state to %s", self.path)
