"""tabpilot - a browser session server for MCP hosts."""

__version__ = "1.0.0"
__description__ = "Browser session coordinator: tabs, dialogs, network quiescence and restart with state."

# Export key components
from tabpilot.config import FullConfig, resolve_cli_config, resolve_config
from tabpilot.context import Context

__all__ = ["Context", "FullConfig", "resolve_config", "resolve_cli_config"]
