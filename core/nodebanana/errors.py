"""
Engine errors.

Fatal-for-run errors derive from NodeExecutionError: the run controller marks
the offending node as failed with the error message, halts the remainder of the
run and returns to idle. GraphCycleError is raised before anything executes.
PersistenceFailureError is never allowed to fail a run.
"""


class EngineError(Exception):
    """Base class for all workflow engine errors."""


class GraphCycleError(EngineError):
    """The node/edge graph contains a cycle and cannot be ordered."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Cycle detected in workflow at node '{node_id}'")


class NodeNotFoundError(EngineError, LookupError):
    """A node id does not exist in the graph store."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class NodeLockedError(EngineError):
    """A user edit targeted the node the engine is currently executing."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' is executing and cannot be edited")


class NodeExecutionError(EngineError):
    """A fatal-for-run failure scoped to a single node."""

    def __init__(self, message: str, node_id: str | None = None):
        self.message = message
        self.node_id = node_id
        super().__init__(message)


class MissingRequiredInputError(NodeExecutionError):
    """A node is missing a connected input it cannot run without."""


class UnconfiguredNodeError(NodeExecutionError):
    """A node requires manual configuration before it can run."""


class RequestFailureError(NodeExecutionError):
    """The generation service rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, node_id: str | None = None):
        self.status_code = status_code
        super().__init__(message, node_id=node_id)


class InvalidOptionError(RequestFailureError):
    """A generation option does not match the kind its model declares."""

    def __init__(self, key: str, expected: str, value: object):
        self.key = key
        self.expected = expected
        super().__init__(f"Option '{key}' expects a {expected} value, got {value!r}")


class JobTimeoutError(NodeExecutionError):
    """An asynchronous generation job did not finish within the attempt ceiling."""

    def __init__(self, operation_id: str, attempts: int):
        self.operation_id = operation_id
        self.attempts = attempts
        super().__init__(f"Generation job timed out after {attempts} polls ({operation_id})")


class RunCancelledError(EngineError):
    """The run was stopped while a node was waiting on a job."""


class PersistenceFailureError(EngineError):
    """Saving an artifact or workflow file failed. Reported, never fatal."""
