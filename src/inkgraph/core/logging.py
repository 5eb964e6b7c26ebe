"""Logging configuration with pretty formatting for inkgraph."""

import logging
from typing import Optional, Dict, Any
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
    RESET = '\033[0m'        # Reset
    BOLD = '\033[1m'         # Bold
    DIM = '\033[2m'          # Dim

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
        'INFO': (Colors.INFO, 'ℹ'),
        'TRANSITION': (Colors.SUCCESS, '→'),
        'WARNING': (Colors.WARNING, '⚠'),
        'ERROR': (Colors.ERROR, '✖'),
        'CRITICAL': (Colors.ERROR + Colors.BOLD, '‼'),
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
    ORCHESTRATOR = "inkgraph.core.orchestrator"
    ROUTER = "inkgraph.core.graph.router"
    NODES = "inkgraph.core.graph.nodes"
    MEMORY = "inkgraph.core.memory"
    HITL = "inkgraph.core.hitl"
    FAILURES = "inkgraph.core.failures"
    STORAGE = "inkgraph.core.storage"
    SERVICES = "inkgraph.services"

class LogLevel(IntEnum):
    """Log levels mapped to logging module levels."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    TRANSITION = 22  # Custom level for job state transitions
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

logging.addLevelName(LogLevel.TRANSITION, "TRANSITION")

class InkLoggingConfig(BaseModel):
    """Configuration for logging behavior."""
    level: LogLevel = Field(default=LogLevel.INFO)
    show_node_outputs: bool = Field(default=False)
    show_transitions: bool = Field(default=True)
    log_file: Optional[str] = None

def configure_logging(
    default_level: LogLevel = LogLevel.INFO,
    component_levels: Optional[Dict[LogComponent, LogLevel]] = None,
    pretty: bool = True,
    log_file: Optional[str] = None
) -> None:
    """Configure logging with pretty formatting."""
    handlers = []

    # Console handler with pretty formatting
    console_handler = PrettyLogHandler() if pretty else logging.StreamHandler()
    console_handler.setFormatter(
        PrettyFormatter(DETAILED_FORMAT) if pretty else logging.Formatter(PRETTY_FORMAT)
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
            LogComponent.ORCHESTRATOR: LogLevel.TRANSITION,
            LogComponent.HITL: LogLevel.INFO,
            LogComponent.FAILURES: LogLevel.INFO,
            LogComponent.NODES: LogLevel.INFO,
        }

    for component, level in component_levels.items():
        logging.getLogger(component.value).setLevel(level.value)

def get_logger(component: LogComponent) -> logging.Logger:
    """Get a logger for a specific component."""
    return logging.getLogger(component.value)

def log_transition(logger: logging.Logger, job_id: str, source: str, target: str, detail: str = "") -> None:
    """Log a job state transition at TRANSITION level."""
    suffix = f" ({detail})" if detail else ""
    logger.log(
        LogLevel.TRANSITION,
        f"job {job_id}: {Colors.BOLD}{source}{Colors.RESET} -> "
        f"{Colors.BOLD}{target}{Colors.RESET}{suffix}"
    )

def log_state(logger: logging.Logger, state: Dict[str, Any], prefix: str = "") -> None:
    """Log a state dictionary in a readable format."""
    for key, value in state.items():
        if isinstance(value, dict):
            logger.debug(f"{prefix}{key}:")
            log_state(logger, value, prefix + "  ")
        else:
            logger.debug(f"{prefix}{key}: {value}")
