"""
Core module for configuration, logging and the estimation engine.

Note: the engine package is not imported at package level so that
catquiz.schemas can import catquiz.core.exceptions without pulling in the
engine. Import it directly: from catquiz.core.cat import ...
"""
from .config import settings

__all__ = ["settings"]
