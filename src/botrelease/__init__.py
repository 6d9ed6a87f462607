"""
BotRelease - Two-stage container build and release tool for a compiled bot
"""

__version__ = "0.3.0"

from .core import PipelineError, ReleasePipeline

__all__ = ["ReleasePipeline", "PipelineError"]
