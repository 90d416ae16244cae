"""
Logging Configuration for swarmlock.

Provides centralized logging configuration with verbose mode toggle,
per-feature logging, and structured log formatting. The leader routine is
run from a systemd timer, so console output goes to stderr and ends up in
the journal; stdout is left for command results.

Usage:
    from swarmlock.logging_config import setup_logging, FeatureArea

    # Setup at process start; deployment hook chatter only at WARNING+
    setup_logging(verbose=True, features=set(FeatureArea) - {FeatureArea.DEPLOY})

    logger = logging.getLogger(__name__)
    logger.info("Lease renewed", extra={'extra_data': {'lease': lease}})
"""

import os
import sys
import json
import logging
import threading
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Optional, Dict, Any, Set, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


# =============================================================================
# LOGGING LEVELS AND FEATURES
# =============================================================================

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, 'TRACE')
logging.addLevelName(VERBOSE, 'VERBOSE')
logging.addLevelName(25, 'NOTICE')


class FeatureArea(Enum):
    """Feature areas for targeted logging."""
    CORE = auto()           # CLI and process lifecycle
    COORDINATOR = auto()    # Leader election / worker join
    LOCK_STORE = auto()     # Lock record store
    ENGINE = auto()         # Orchestration engine adapter
    IDENTITY = auto()       # Node identity source
    DEPLOY = auto()         # Deployment hooks
    CONFIG = auto()         # Configuration loading


# Logger name prefixes owned by each feature area
FEATURE_LOGGERS: Dict[FeatureArea, Tuple[str, ...]] = {
    FeatureArea.CORE: ('swarmlock.cli', 'swarmlock.utils', 'swarmlock.logging_config'),
    FeatureArea.COORDINATOR: (
        'swarmlock.distributed.leader_manager',
        'swarmlock.distributed.worker_manager',
        'swarmlock.distributed.joiner',
        'swarmlock.distributed.polling',
    ),
    FeatureArea.LOCK_STORE: ('swarmlock.distributed.lock_store',),
    FeatureArea.ENGINE: ('swarmlock.engine',),
    FeatureArea.IDENTITY: ('swarmlock.identity',),
    FeatureArea.DEPLOY: ('swarmlock.deploy',),
    FeatureArea.CONFIG: ('swarmlock.config',),
}


def feature_for(name: str) -> FeatureArea:
    """Feature area owning a logger name (CORE when none does)."""
    for feature, prefixes in FEATURE_LOGGERS.items():
        for prefix in prefixes:
            if name == prefix or name.startswith(prefix + '.'):
                return feature
    return FeatureArea.CORE


# =============================================================================
# THREAD-SAFE CONFIGURATION STATE
# =============================================================================

@dataclass
class LoggingState:
    """Thread-safe logging configuration state."""
    verbose: bool = False
    trace: bool = False
    log_file: Optional[str] = None
    console_enabled: bool = True
    json_format: bool = False
    feature_levels: Dict[FeatureArea, int] = field(default_factory=dict)
    enabled_features: Set[FeatureArea] = field(default_factory=lambda: set(FeatureArea))
    initialized: bool = False
    _lock: threading.RLock = field(default_factory=threading.RLock)

    def __post_init__(self):
        if not self.feature_levels:
            for feature in FeatureArea:
                self.feature_levels[feature] = logging.INFO


_state = LoggingState()


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================

class SwarmFormatter(logging.Formatter):
    """Formatter with color support and structured output."""

    COLORS = {
        'TRACE': '\033[90m',      # Gray
        'DEBUG': '\033[36m',      # Cyan
        'VERBOSE': '\033[94m',    # Light blue
        'INFO': '\033[32m',       # Green
        'NOTICE': '\033[33m',     # Yellow
        'WARNING': '\033[33;1m',  # Bold yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[31;1m', # Bold red
        'RESET': '\033[0m',
    }

    def __init__(self, use_colors: bool = True, json_format: bool = False, stream=None):
        stream = stream if stream is not None else sys.stderr
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()
        self.json_format = json_format
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        if self.json_format:
            return self._format_json(record)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        level_name = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            level_str = f"{color}{level_name:8}{reset}"
        else:
            level_str = f"{level_name:8}"

        feature = self._extract_feature(record.name)
        feature_str = f"[{feature}]" if feature else ""

        msg = record.getMessage()

        extra_str = ""
        if hasattr(record, 'extra_data') and record.extra_data:
            extra_items = [f"{k}={v}" for k, v in record.extra_data.items()]
            extra_str = f" | {', '.join(extra_items)}"

        text = f"[ {timestamp} ] {level_str} {feature_str:16} {msg}{extra_str}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text

    def _format_json(self, record: logging.LogRecord) -> str:
        data = {
            'timestamp': datetime.now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'feature': self._extract_feature(record.name),
            'area': feature_for(record.name).name,
        }

        if hasattr(record, 'extra_data') and record.extra_data:
            data['extra'] = record.extra_data

        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)

    def _extract_feature(self, logger_name: str) -> str:
        """Extract feature area from logger name."""
        parts = logger_name.split('.')
        if len(parts) >= 2:
            # swarmlock.distributed.leader_manager -> leader_manager
            return parts[-1] if parts[0] == 'swarmlock' else parts[0]
        return parts[0] if parts else 'core'


# =============================================================================
# CUSTOM LOGGER CLASS
# =============================================================================

class SwarmLogger(logging.Logger):
    """Logger that knows which feature area it belongs to."""

    def __init__(self, name: str, level: int = logging.NOTSET):
        super().__init__(name, level)
        self._feature: FeatureArea = feature_for(name)

    @property
    def feature(self) -> FeatureArea:
        return self._feature


logging.setLoggerClass(SwarmLogger)


# =============================================================================
# SETUP AND CONFIGURATION
# =============================================================================

def _apply_feature_levels() -> None:
    for feature, prefixes in FEATURE_LOGGERS.items():
        for prefix in prefixes:
            logging.getLogger(prefix).setLevel(_state.feature_levels[feature])


def setup_logging(
    verbose: bool = False,
    trace: bool = False,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    features: Optional[Set[FeatureArea]] = None,
) -> None:
    """
    Initialize the logging system.

    Args:
        verbose: Enable verbose logging (VERBOSE level)
        trace: Enable trace logging (TRACE level, implies verbose)
        log_file: Optional file path for log output
        console: Enable console (stderr) output
        json_format: Use JSON format for logs
        features: Set of features to log at the base level (others WARNING+)
    """
    with _state._lock:
        _state.verbose = verbose or trace
        _state.trace = trace
        _state.log_file = log_file
        _state.console_enabled = console
        _state.json_format = json_format
        _state.enabled_features = set(features) if features is not None else set(FeatureArea)

        if trace:
            base_level = TRACE
        elif verbose:
            base_level = VERBOSE
        else:
            base_level = logging.INFO

        root = logging.getLogger()
        root.setLevel(base_level)

        for handler in root.handlers[:]:
            root.removeHandler(handler)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(base_level)
            console_handler.setFormatter(SwarmFormatter(
                use_colors=True,
                json_format=json_format,
            ))
            root.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(base_level)
            file_handler.setFormatter(SwarmFormatter(
                use_colors=False,
                json_format=json_format,
            ))
            root.addHandler(file_handler)

        for feature in FeatureArea:
            level = base_level if feature in _state.enabled_features else logging.WARNING
            _state.feature_levels[feature] = level
        _apply_feature_levels()

        # Quiet the AWS SDK unless tracing
        sdk_level = logging.DEBUG if trace else logging.WARNING
        for name in ('boto3', 'botocore', 'urllib3'):
            logging.getLogger(name).setLevel(sdk_level)

        _state.initialized = True


def get_logging_state() -> Dict[str, Any]:
    """Get current logging configuration state."""
    with _state._lock:
        return {
            'verbose': _state.verbose,
            'trace': _state.trace,
            'log_file': _state.log_file,
            'console_enabled': _state.console_enabled,
            'json_format': _state.json_format,
            'enabled_features': sorted(f.name for f in _state.enabled_features),
            'initialized': _state.initialized,
        }


# =============================================================================
# ENVIRONMENT VARIABLE CONFIGURATION
# =============================================================================

def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def configure_from_environment(**overrides) -> None:
    """Configure logging from SWARMLOCK_* environment variables.

    Keyword overrides (e.g. from CLI flags) win when truthy.
    """
    enabled_features = set(FeatureArea)
    unknown = []
    disabled = os.environ.get('SWARMLOCK_LOG_DISABLE_FEATURES', '')
    for feature_name in filter(None, (name.strip() for name in disabled.split(','))):
        try:
            enabled_features.discard(FeatureArea[feature_name.upper()])
        except KeyError:
            unknown.append(feature_name)

    setup_logging(
        verbose=overrides.get('verbose') or _env_flag('SWARMLOCK_VERBOSE'),
        trace=overrides.get('trace') or _env_flag('SWARMLOCK_TRACE'),
        log_file=overrides.get('log_file') or os.environ.get('SWARMLOCK_LOG_FILE'),
        console=not _env_flag('SWARMLOCK_LOG_NO_CONSOLE'),
        json_format=overrides.get('json_format') or _env_flag('SWARMLOCK_LOG_JSON'),
        features=enabled_features,
    )

    if unknown:
        logger.warning(
            f"Ignoring unknown SWARMLOCK_LOG_DISABLE_FEATURES entries: {', '.join(unknown)} "
            f"(known: {', '.join(f.name.lower() for f in FeatureArea)})"
        )


__all__ = [
    'FeatureArea',
    'FEATURE_LOGGERS',
    'feature_for',
    'setup_logging',
    'configure_from_environment',
    'get_logging_state',
    'SwarmLogger',
    'SwarmFormatter',
]
