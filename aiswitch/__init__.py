"""
aiswitch — Provider-agnostic completion layer.

Send a conversation to "the active AI model" without knowing which vendor
backs it, switch vendors at runtime, validate credentials against the live
endpoint, and consume either a complete answer or a streamed one.
"""

from pathlib import Path
import tomllib
from importlib.metadata import version, PackageNotFoundError

def _resolve_version() -> str:
    """Resolve the aiswitch version.

    Priority:
    1) Local source checkout version from pyproject.toml (if present)
    2) Installed package metadata
    3) Safe fallback
    """
    try:
        root = Path(__file__).resolve().parent.parent
        pyproject = root / "pyproject.toml"
        if pyproject.exists():
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            proj = data.get("project", {})
            ver = proj.get("version")
            if isinstance(ver, str) and ver.strip():
                return ver.strip()
    except (OSError, tomllib.TOMLDecodeError):
        pass

    try:
        return version("aiswitch")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _resolve_version()

from aiswitch.core.errors import (  # noqa: E402
    AISwitchError,
    ConfigurationError,
    NoActiveClientError,
    ParseError,
    TransportError,
    ValidationError,
    VendorError,
)
from aiswitch.core.models import (  # noqa: E402
    CompletionOptions,
    CompletionResult,
    ConversationTurn,
    Role,
)
from aiswitch.core.config import ConfigurationStore  # noqa: E402
from aiswitch.service import AIService  # noqa: E402

__all__ = [
    "__version__",
    "AIService",
    "AISwitchError",
    "CompletionOptions",
    "CompletionResult",
    "ConfigurationError",
    "ConfigurationStore",
    "ConversationTurn",
    "NoActiveClientError",
    "ParseError",
    "Role",
    "TransportError",
    "ValidationError",
    "VendorError",
]
