"""conflux: one update event for AND/OR combinations of cursor updates."""

from importlib.metadata import version as _version

__version__ = _version("conflux")

from conflux.stream import EventStream
from conflux.combination import Combination, CombinationError, Operator, Source, fold
from conflux.tree import Tree, Cursor, set_scheduler
# textual NOT auto-imported — opt-in only

__all__ = [
    "EventStream",
    "Combination",
    "CombinationError",
    "Operator",
    "Source",
    "fold",
    "Tree",
    "Cursor",
    "set_scheduler",
]
