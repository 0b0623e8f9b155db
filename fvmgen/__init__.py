"""Annotation-driven interface compiler for FVM actors."""

from . import constants as _constants
from . import macros as _macros
from . import sandbox as _sandbox
from .constants import *  # noqa: F401,F403
from .macros import *  # noqa: F401,F403
from .sandbox import *  # noqa: F401,F403

__all__ = []
__all__ += getattr(_constants, "__all__", [])
__all__ += getattr(_macros, "__all__", [])
__all__ += getattr(_sandbox, "__all__", [])
