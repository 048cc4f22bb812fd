"""
Module registry: thread-safe store of registered modules.

The registry:
- Inserts or replaces modules by ID (one entry per ID)
- Keeps a view sorted by descending priority
- Hands out snapshots so callers never observe concurrent mutation

The lock is only held for list operations, never while a module runs.
"""

import threading
from typing import List, Optional

from utils.logger import get_logger


class ModuleRegistry:
    """Central registry for all capability modules"""

    def __init__(self):
        self._modules = []
        self._lock = threading.Lock()
        self.logger = get_logger("registry")

    def register(self, module) -> None:
        """
        Insert a module, replacing any existing module with the same ID.

        Args:
            module: BaseModule instance
        """
        module_id = module.get_id()
        with self._lock:
            replaced = any(m.get_id() == module_id for m in self._modules)
            self._modules = [m for m in self._modules if m.get_id() != module_id]
            self._modules.append(module)
            # sort() is stable: equal priorities keep registration order
            self._modules.sort(key=lambda m: m.get_priority(), reverse=True)

        action = "Replaced" if replaced else "Registered"
        self.logger.info(f"{action} module: {module_id} - {module.get_name()}")

    def unregister(self, module_id: str) -> bool:
        """
        Remove a module by ID. Unknown IDs are ignored.

        Returns:
            True if a module was removed
        """
        with self._lock:
            before = len(self._modules)
            self._modules = [m for m in self._modules if m.get_id() != module_id]
            removed = len(self._modules) != before

        if removed:
            self.logger.info(f"Unregistered module: {module_id}")
        return removed

    def list(self) -> List[object]:
        """
        Snapshot of registered modules, highest priority first.

        Returns:
            New list; safe to iterate while other threads register/unregister
        """
        with self._lock:
            return list(self._modules)

    def find_by_id(self, module_id: Optional[str]) -> Optional[object]:
        """
        Case-insensitive lookup.

        Returns:
            Module instance or None
        """
        if not module_id:
            return None
        wanted = module_id.lower()
        for module in self.list():
            if module.get_id().lower() == wanted:
                return module
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._modules)
