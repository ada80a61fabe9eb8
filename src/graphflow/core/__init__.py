"""Core modules for graphflow."""

from graphflow.core.config import GraphConfig, RunConfig
from graphflow.core.logging import configure_logging, LogLevel, LogComponent

__all__ = [
    'GraphConfig',
    'RunConfig',
    'configure_logging',
    'LogLevel',
    'LogComponent'
]
