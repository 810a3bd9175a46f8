"""devloop-core: debounced watch engine and process supervisor for dev sessions."""

__version__ = "0.1.0"

# Config
from devloop_core.config import load_dev_config, validate_dev_config

# Watching
from devloop_core.file_watcher import DebouncedWatch, FileWatcherManager

# Models
from devloop_core.models import (
    ConfigValidationResult,
    DevConfig,
    DevOptions,
    ProtoConfigItem,
    SyncConfigItem,
)

# Supervision
from devloop_core.supervisor import ProcessSupervisor, SupervisorState
from devloop_core.watchers import ChangeEvent, ChangeKind, WatchRegistration, WindowState

__all__ = [
    "__version__",
    # Models
    "ChangeEvent",
    "ChangeKind",
    "WatchRegistration",
    "WindowState",
    "DevConfig",
    "DevOptions",
    "ProtoConfigItem",
    "SyncConfigItem",
    "ConfigValidationResult",
    # Engine
    "DebouncedWatch",
    "FileWatcherManager",
    "ProcessSupervisor",
    "SupervisorState",
    # Config
    "load_dev_config",
    "validate_dev_config",
]
