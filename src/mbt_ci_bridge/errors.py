"""Exception types raised across the bridge.

Parse errors are isolated per test or per action by their callers.
Everything else propagates to the event handler and fails the CI run.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class TspParseError(BridgeError):
    """A test document (``Test.tsp``, ``resource.mtr``, ``actions.xml``) is malformed."""


class NotFoundError(BridgeError):
    """A required remote entity or local resource does not exist."""


class ValidationError(BridgeError):
    """Structured input (paths, workflow inputs, test data) is malformed."""


class ScmError(BridgeError):
    """Computing the change set between two commits failed."""


class LauncherError(BridgeError):
    """The automation-tool launcher could not be started."""
