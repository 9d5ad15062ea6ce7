"""Runtime mode selection.

The mode picks which config/models/<mode>.yaml the ModelManager loads.
"""

import os

VALID_MODES = ("local", "hosted", "hybrid")
DEFAULT_MODE = "local"


def get_runtime_mode() -> str:
    """Return the runtime mode from COMMAND_ROUTER_MODE (default: local)."""
    mode = os.getenv("COMMAND_ROUTER_MODE", DEFAULT_MODE).strip().lower()
    if mode not in VALID_MODES:
        raise ValueError(
            f"Invalid COMMAND_ROUTER_MODE '{mode}'. Expected one of: {', '.join(VALID_MODES)}"
        )
    return mode
