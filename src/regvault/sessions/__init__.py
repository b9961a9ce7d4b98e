"""
RegVault Sessions

Per-session register stores and the lanes that serialize access to them.
"""

from regvault.sessions.lanes import SessionLaneManager
from regvault.sessions.session import Session

__all__ = ["Session", "SessionLaneManager"]
