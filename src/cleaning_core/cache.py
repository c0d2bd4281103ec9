"""
Process-wide keyed store handing rules to the first stage of their flow.
"""

import threading
import uuid
from typing import Dict, Optional

from cleaning_core.rules import Rule


class RuleCache:
    """
    Maps opaque keys to rules.

    A fresh key is minted on every ``put``, so keys are never shared between
    orchestrator invocations even for the same rule.
    """

    _instance: Optional["RuleCache"] = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._entries: Dict[str, Rule] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "RuleCache":
        """The process-wide cache."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def put(self, rule: Rule) -> str:
        key = f"{rule.key}:{uuid.uuid4().hex}"
        with self._lock:
            self._entries[key] = rule
        return key

    def get(self, key: str) -> Rule:
        with self._lock:
            try:
                return self._entries[key]
            except KeyError:
                raise KeyError(f"No cache entry for key {key}") from None

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
