"""Flow error definitions."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Cosmetic, run continues
    MEDIUM = "medium"     # Aborts the current run
    HIGH = "high"         # Document or configuration must be fixed
    CRITICAL = "critical" # Environment is unusable


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Network, timeout - may pass on a later run
    PERMANENT = "permanent"       # Bad config, missing file - won't resolve
    EXTERNAL = "external"         # Browser or remote API failure
    VALIDATION = "validation"     # Graph or step shape rejected
    CANCELLED = "cancelled"       # Stopped by the caller


class FlowError(Exception):
    """Base exception for all flowpilot errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        import hashlib
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("step_id", "")),
            str(self.context.get("node_id", "")),
            str(self.context.get("selector", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging/storage."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(FlowError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class StorageError(FlowError):
    """Persisted automation, credential or history I/O error."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        super().__init__(message, **kwargs)
        self.context["path"] = path


# ==================== Graph (edit time) ====================

class GraphError(FlowError):
    """Structural graph error, rejected before the engine ever sees the graph."""

    def __init__(self, message: str, node_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.context["node_id"] = node_id


class DuplicateStepEdgeError(GraphError):
    """A step node already has its single outgoing edge."""

    def __init__(self, node_id: str, **kwargs):
        super().__init__(
            f"Step node {node_id} already has an outgoing edge",
            node_id=node_id,
            **kwargs,
        )


class DuplicateBranchError(GraphError):
    """The requested branch of a conditional is already connected."""

    def __init__(self, node_id: str, handle: str, **kwargs):
        super().__init__(
            f"The '{handle}' branch of node {node_id} is already connected",
            node_id=node_id,
            **kwargs,
        )
        self.handle = handle
        self.context["handle"] = handle


class BranchesExhaustedError(GraphError):
    """Both branches of a conditional are connected."""

    def __init__(self, node_id: str, **kwargs):
        super().__init__(
            f"Both 'if' and 'else' branches of node {node_id} are already connected",
            node_id=node_id,
            **kwargs,
        )


class DanglingEdgeError(GraphError):
    """An edge references a node that does not exist."""

    def __init__(self, edge_id: str, missing: str, **kwargs):
        super().__init__(
            f"Edge {edge_id} references unknown node {missing}",
            node_id=missing,
            **kwargs,
        )
        self.context["edge_id"] = edge_id


class EntryNodeError(GraphError):
    """The entry node is missing, duplicated or being deleted."""


class UnknownNodeError(GraphError):
    """Operation on a node id that is not in the graph."""

    def __init__(self, node_id: str, **kwargs):
        super().__init__(f"Unknown node: {node_id}", node_id=node_id, **kwargs)


class DuplicateNodeError(GraphError):
    """Two nodes share the same id."""

    def __init__(self, node_id: str, **kwargs):
        super().__init__(f"Duplicate node id: {node_id}", node_id=node_id, **kwargs)


class InvalidHandleError(GraphError):
    """An edge handle does not fit its source node kind."""


# ==================== Step execution ====================

class StepError(FlowError):
    """Step dispatch or execution error. Aborts the run."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        step_type: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.context["step_id"] = step_id
        self.context["step_type"] = step_type

    @property
    def step_id(self) -> Optional[str]:
        return self.context.get("step_id")


class MissingSelectorError(StepError):
    """An element step has an empty selector."""

    def __init__(self, step_id: Optional[str] = None, step_type: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(
            f"Step {step_id} ({step_type}) requires a selector",
            step_id=step_id,
            step_type=step_type,
            **kwargs,
        )


class MissingFieldError(StepError):
    """A required step field is empty."""

    def __init__(
        self,
        field_name: str,
        step_id: Optional[str] = None,
        step_type: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(
            f"Step {step_id} ({step_type}) requires '{field_name}'",
            step_id=step_id,
            step_type=step_type,
            **kwargs,
        )
        self.context["field"] = field_name


class InvalidDurationError(StepError):
    """Wait duration is not a non-negative integer number of seconds."""

    def __init__(self, value: Any, step_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(
            f"Invalid wait duration: {value!r}",
            step_id=step_id,
            step_type="wait",
            **kwargs,
        )
        self.context["value"] = value


class InvalidValueError(StepError):
    """A step value cannot be used for the requested operation."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)


class CredentialNotFoundError(StepError):
    """A linked credential cannot be resolved."""

    def __init__(self, credential_ref: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(f"Credential not found: {credential_ref}", **kwargs)
        self.context["credential_ref"] = credential_ref


class DriverFailureError(StepError):
    """The browser driver reported a failure or raised."""

    def __init__(self, message: str, screenshot: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.screenshot = screenshot


class HttpFailureError(StepError):
    """An apiCall request failed or returned a non-2xx status."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        kwargs.setdefault("step_type", "apiCall")
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.context["url"] = url
        self.context["status_code"] = status_code


# ==================== Conditional evaluation ====================

class EvaluationError(FlowError):
    """Malformed conditional or comparison."""

    def __init__(self, message: str, node_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.context["node_id"] = node_id


class RunStoppedError(FlowError):
    """The run was stopped through its RunControl."""

    def __init__(self, message: str = "Run stopped", node_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.CANCELLED)
        super().__init__(message, **kwargs)
        self.context["node_id"] = node_id
