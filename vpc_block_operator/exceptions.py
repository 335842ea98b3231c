"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class OperatorError(Exception):
    """Base class for all operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop the
        operator process rather than fail a single reconciliation tick
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class OperatorFatalError(OperatorError):
    """An OperatorFatalError is one that indicates an unexpected, and likely
    unrecoverable, failure while composing or starting the controllers.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class DuplicateNameError(OperatorFatalError):
    """Two controllers were registered with the same name"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"A controller named [{name}] is already registered")


class ConfigError(OperatorFatalError):
    """Exception caused during usage of user-provided configuration"""


class ClusterError(OperatorFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


## Expected Errors #############################################################


class OperatorExpectedError(OperatorError):
    """An OperatorExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation tick to terminate, but is
    expected to resolve in a subsequent tick.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ConversionError(OperatorExpectedError):
    """The generic representation of an object could not be cast to its typed
    schema
    """


class ExtractionError(OperatorExpectedError):
    """The field-manager ownership of an object could not be resolved"""


class ConflictError(OperatorExpectedError):
    """A write raced with a concurrent modification of the same object. The
    caller should retry against the latest observed version.
    """


class PredicateConflictError(OperatorExpectedError):
    """The install and remove predicates of a conditional resource both
    evaluated true in the same tick
    """


class PreconditionError(OperatorExpectedError):
    """An input required to render a manifest is not (yet) available"""


class ResourceNotServedError(OperatorExpectedError):
    """The cluster does not serve the requested kind"""


class TickCancelledError(OperatorExpectedError):
    """The shared context was cancelled while a tick was in flight"""


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError. This
    should be used when rendering a manifest which requires that an observed
    input is present before continuing.
    """
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when composing controllers from static configuration.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching a resource
    handle) must succeed.
    """
    if not condition:
        raise ClusterError(message)
