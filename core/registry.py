"""
core/registry.py

In-memory registry of installations and instances known to the provider.

The registry is read by background workers (polling loop, action handler) while callback
requests register and remove entries from request threads. To keep iteration safe, writers
never touch the live collections: registrations and removals are staged, and only
`apply_pending()` moves them into the live set. Every consumer calls `apply_pending()` before
it reads, so one polling cycle always works on a consistent snapshot and entries registered
during a cycle show up in the next one.
"""

import logging
import threading
from typing import Dict, List, Optional

from shared.errors import NotFoundError
from shared.models import Installation, Instance


class Registry:
    """
    Staged registry of installations (keyed by id) and instances (in registration order).

    Thread safety: all public methods take the same re-entrant lock. `instances()` returns a
    copy, so callers may iterate while other threads stage changes.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()

        self._installations: Dict[str, Installation] = {}
        self._instances: List[Instance] = []

        self._new_installations: List[Installation] = []
        self._installations_to_remove: List[str] = []
        self._new_instances: List[Instance] = []
        self._instances_to_remove: List[str] = []

    # --- writers (staging) ---

    def register_installations(self, *installations: Installation) -> None:
        with self._lock:
            self._new_installations.extend(installations)

    def register_instances(self, *instances: Instance) -> None:
        with self._lock:
            self._new_instances.extend(instances)

    def remove_installation(self, installation_id: str) -> None:
        """
        Stage the installation for removal.

        Raises:
            NotFoundError: If the installation is not part of the applied set. Nothing is staged.
        """
        with self._lock:
            if installation_id not in self._installations:
                raise NotFoundError(f"installation {installation_id} not found")
            self._installations_to_remove.append(installation_id)

    def remove_instance(self, instance_id: str) -> None:
        """
        Stage the instance for removal.

        Raises:
            NotFoundError: If the instance is not part of the applied set. Nothing is staged.
        """
        with self._lock:
            if self._find_instance_index(instance_id) < 0:
                raise NotFoundError(f"instance {instance_id} not found")
            self._instances_to_remove.append(instance_id)

    # --- apply ---

    def apply_pending(self) -> None:
        """
        Apply staged changes: removals first, then additions, then clear the staging lists.

        Removals of ids that disappeared in the meantime are ignored. Calling this twice in a row
        without staging anything in between leaves the live set unchanged.
        """
        with self._lock:
            if self._instances_to_remove:
                removed = set(self._instances_to_remove)
                self._instances = [i for i in self._instances if i.id not in removed]
            for installation_id in self._installations_to_remove:
                self._installations.pop(installation_id, None)

            self._instances.extend(self._new_instances)
            for installation in self._new_installations:
                self._installations[installation.id] = installation

            if self._new_installations or self._new_instances:
                self._logger.debug(
                    "Applied %d new installations and %d new instances",
                    len(self._new_installations),
                    len(self._new_instances),
                )

            self._instances_to_remove = []
            self._installations_to_remove = []
            self._new_instances = []
            self._new_installations = []

    # --- readers (applied set only) ---

    def instances(self) -> List[Instance]:
        with self._lock:
            return list(self._instances)

    def installations(self) -> List[Installation]:
        with self._lock:
            return list(self._installations.values())

    def get_installation(self, installation_id: str) -> Optional[Installation]:
        with self._lock:
            return self._installations.get(installation_id)

    def get_instance(self, instance_id: str) -> Optional[Instance]:
        with self._lock:
            index = self._find_instance_index(instance_id)
            return self._instances[index] if index >= 0 else None

    def pending_count(self) -> int:
        """Number of staged changes not yet applied."""
        with self._lock:
            return (
                len(self._new_installations)
                + len(self._installations_to_remove)
                + len(self._new_instances)
                + len(self._instances_to_remove)
            )

    def _find_instance_index(self, instance_id: str) -> int:
        for index, instance in enumerate(self._instances):
            if instance.id == instance_id:
                return index
        return -1
