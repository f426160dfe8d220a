"""
Processes feature — lifecycle of the locally started application.

Public API:
    from features.processes import ProcessManager, FileProcessRegistry, InMemoryProcessRegistry
"""

from features.processes.manager import ProcessManager
from features.processes.registry import (
    FileProcessRegistry,
    InMemoryProcessRegistry,
    ProcessRegistry,
)

__all__ = ["ProcessManager", "ProcessRegistry", "FileProcessRegistry", "InMemoryProcessRegistry"]
