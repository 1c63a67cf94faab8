"""ReleaseReadiness package exports."""

from .orchestration import *  # noqa: F401,F403
from .orchestration import __all__ as _orchestration_all

__all__ = [*_orchestration_all]
