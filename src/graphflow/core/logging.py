"""Logging configuration with pretty formatting for graphflow."""

import logging
import sys
from typing import Optional, Dict, Any, Mapping
from enum import Enum, IntEnum
from datetime import datetime
from pydantic import BaseModel, Field

# ANSI Color Codes
class Colors:
    """ANSI color codes for pretty terminal output."""
    HEADER = '\033[95m'      # Pink
    INFO = '\033[94m'        # Blue
    SUCCESS = '\033[92m'     # Green
    WARNING = '\033[93m'     # Yellow
    ERROR = '\033[91m'       # Red
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

# Pretty format strings
PRETTY_FORMAT = (
    "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
)

DETAILED_FORMAT = (
    f"{Colors.DIM}%(asctime)s{Colors.RESET} │ "
    f"%(colored_level)-40s │ "
    f"{Colors.DIM}%(name)s{Colors.RESET} │ "
    f"%(message)s"
)

class PrettyFormatter(logging.Formatter):
    """Formatter with colors and symbols per level."""

    level_colors = {
        'DEBUG': (Colors.DIM, '·'),
        'VERBOSE': (Colors.DIM, '…'),
        'INFO': (Colors.INFO, 'ℹ'),
        'STEP': (Colors.SUCCESS, '▶'),       # superstep completions
        'CHECKPOINT': (Colors.HEADER, '⚑'),  # checkpoint saves
        'WARNING': (Colors.WARNING, '⚠'),
        'ERROR': (Colors.ERROR, '✖'),
        'CRITICAL': (Colors.ERROR + Colors.BOLD, '✖'),
    }

    def format(self, record):
        color, symbol = self.level_colors.get(record.levelname, (Colors.RESET, '•'))
        record.colored_level = f"{color}{symbol} {record.levelname}{Colors.RESET}"

        message = super().format(record)

        # Separator line for errors and warnings
        if record.levelno >= logging.WARNING:
            message = f"{message}\n{Colors.DIM}{'─' * 80}{Colors.RESET}"

        return message

class PrettyLogHandler(logging.StreamHandler):
    """Stream handler that stamps a short wall-clock time on each record."""

    def emit(self, record):
        record.asctime = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        super().emit(record)

class LogComponent(str, Enum):
    """Components that can be logged."""
    GRAPH = "graphflow.core.graph"
    RUNTIME = "graphflow.core.graph.runtime"
    SCHEMA = "graphflow.core.graph.schema"
    CHECKPOINT = "graphflow.core.checkpoint"
    REGISTRY = "graphflow.core.checkpoint.registry"
    WORKFLOW = "graphflow.workflow"

class LogLevel(IntEnum):
    """Log levels mapped to logging module levels."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL
    STEP = 25        # Custom level for superstep completions
    CHECKPOINT = 26  # Custom level for checkpoint saves

class VerbosityLevel(IntEnum):
    """Custom verbosity levels for more granular control."""
    DEBUG = logging.DEBUG
    VERBOSE = 15  # Custom lower-than-INFO level
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

# Register custom log levels
logging.addLevelName(LogLevel.STEP, "STEP")
logging.addLevelName(LogLevel.CHECKPOINT, "CHECKPOINT")
logging.addLevelName(VerbosityLevel.VERBOSE, "VERBOSE")

class LoggingConfig(BaseModel):
    """Configuration for engine logging behavior.

    Levels are set per component with ``configure_logging``.
    """
    show_node_transitions: bool = Field(default=False)
    show_state: bool = Field(default=False)

def configure_logging(
    default_level: LogLevel = LogLevel.INFO,
    component_levels: Optional[Dict[LogComponent, LogLevel]] = None,
    pretty: bool = True,
    log_file: Optional[str] = None
) -> None:
    """Configure logging with pretty formatting.

    The library never calls this itself; applications and examples do.
    """
    handlers = []

    # Console handler with pretty formatting
    console_handler = PrettyLogHandler(sys.stdout) if pretty else logging.StreamHandler()
    console_handler.setFormatter(
        PrettyFormatter(DETAILED_FORMAT if pretty else PRETTY_FORMAT)
    )
    handlers.append(console_handler)

    # File handler if specified (without colors)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(PRETTY_FORMAT))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(default_level.value)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in handlers:
        root_logger.addHandler(handler)

    if not component_levels:
        component_levels = {
            LogComponent.GRAPH: LogLevel.INFO,
            LogComponent.RUNTIME: LogLevel.STEP,
            LogComponent.CHECKPOINT: LogLevel.INFO,
        }

    for component, level in component_levels.items():
        logger = logging.getLogger(component.value)
        logger.setLevel(level.value)

def get_logger(component: LogComponent) -> logging.Logger:
    """Get a logger for a specific component."""
    logger = logging.getLogger(component.value)

    # Convenience methods for the custom levels
    def log_step(self, msg: str) -> None:
        self.log(LogLevel.STEP, msg)

    def log_checkpoint(self, msg: str) -> None:
        self.log(LogLevel.CHECKPOINT, msg)

    logger.step = lambda msg: log_step(logger, msg)
    logger.checkpoint = lambda msg: log_checkpoint(logger, msg)

    return logger

def log_verbose(logger: logging.Logger, message: str) -> None:
    """Log a message at VERBOSE level."""
    if logger.isEnabledFor(VerbosityLevel.VERBOSE):
        logger.log(VerbosityLevel.VERBOSE, message)

def log_state(logger: logging.Logger, state: Any, prefix: str = "") -> None:
    """Log a state value (dict, model or dataclass) key by key at DEBUG."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    if isinstance(state, BaseModel):
        state = dict(state)
    elif hasattr(state, "__dataclass_fields__"):
        state = {name: getattr(state, name) for name in state.__dataclass_fields__}
    if not isinstance(state, Mapping):
        logger.debug(f"{prefix}{state!r}")
        return
    for key, value in state.items():
        if isinstance(value, Mapping):
            logger.debug(f"{prefix}{key}:")
            log_state(logger, value, prefix + "  ")
        else:
            logger.debug(f"{prefix}{key}: {value!r}")
