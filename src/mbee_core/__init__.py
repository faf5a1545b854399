"""MBEE core - element graph storage for model-based systems engineering.

Modules:
- elements: find/create/update/remove/search over a branch's element graph
- crud: users, organizations, projects and branches
- jmi: JSON Model Interchange conversions
- validators, branch_guard, permissions: checks applied to element writes
"""

__version__ = "1.0.0"

from . import crud
from . import elements
from . import jmi

__all__ = ["crud", "elements", "jmi", "__version__"]
