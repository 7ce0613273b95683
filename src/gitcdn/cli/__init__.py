"""gitcdn CLI: manage files in a git repository used as a CDN."""

from ._helpers import main  # noqa: F401  (entry point)

# Import command modules to register Click commands with the main group.
from . import _basic, _serve  # noqa: F401
