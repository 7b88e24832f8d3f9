"""Event roster: optimistic status toggling and background refresh"""

from .roster import Roster, RosterStats

__all__ = ["Roster", "RosterStats"]
