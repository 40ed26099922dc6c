"""
Node Name Registry

Manages the names under which processes running on this node can be
looked up by remote clients (whereis).
"""

import logging
from typing import Dict, Optional

from .process import Process
from .schemas import DisconnectReason

logger = logging.getLogger(__name__)


class NameRegistry:
    """
    Maps registered names to live processes on one node.

    A process is unregistered automatically when it exits.
    """

    def __init__(self, node_id: str):
        """
        Initialize the name registry.

        Args:
            node_id: Unique identifier for this node
        """
        self.node_id = node_id
        self._names: Dict[str, Process] = {}  # name -> process
        self._monitors: Dict[str, int] = {}  # name -> monitor handle

    def register(self, name: str, process: Process):
        """
        Register a process under a name.

        Args:
            name: Name to register
            process: The process

        Raises:
            ValueError: If the name is held by another live process, or the
                process has already exited
        """
        current = self._names.get(name)
        if current is not None and current is not process:
            raise ValueError(f"Name '{name}' is already registered")
        if not process.alive:
            raise ValueError(f"Process {process.pid} has exited")

        def _on_exit(proc: Process, reason: DisconnectReason):
            if self._names.get(name) is proc:
                del self._names[name]
                self._monitors.pop(name, None)
                logger.info(f"Unregistered '{name}' ({proc.pid} exited)")

        self._names[name] = process
        self._monitors[name] = process.monitor(_on_exit)
        logger.info(f"Registered '{name}' as {process.pid} on {self.node_id}")

    def unregister(self, name: str):
        process = self._names.pop(name, None)
        handle = self._monitors.pop(name, None)
        if process is not None and handle is not None:
            process.demonitor(handle)

    def whereis(self, name: str) -> Optional[Process]:
        """
        Look up a process by name.

        Returns:
            The process if registered, None otherwise
        """
        return self._names.get(name)

    def get_process(self, pid: str) -> Optional[Process]:
        """Look up a registered process by pid."""
        for process in self._names.values():
            if process.pid == pid:
                return process
        return None

    def list_names(self) -> Dict[str, str]:
        """
        Get all registered names.

        Returns:
            Dictionary mapping name -> pid
        """
        return {name: proc.pid for name, proc in self._names.items()}
