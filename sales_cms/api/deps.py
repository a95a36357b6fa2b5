"""
Shared API dependencies
"""

from typing import Optional

from ..system import CaseManagementSystem


_system: Optional[CaseManagementSystem] = None


def get_system() -> CaseManagementSystem:
    """Dependency returning the process-wide system, built from config on first use"""
    global _system
    if _system is None:
        _system = CaseManagementSystem()
    return _system


def set_system(system: Optional[CaseManagementSystem]) -> Optional[CaseManagementSystem]:
    """Swap the process-wide system and return the previous one"""
    global _system
    previous = _system
    _system = system
    return previous
