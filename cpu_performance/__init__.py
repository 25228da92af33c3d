"""
Single-host tool that pins CPU cores to the performance governor and reports CPU and memory state.
"""

__all__ = ["logbook", "system_state", "formatting", "cli"]
__version__ = "0.1.0"
