class PatchwrightError(Exception):
    """Base class for all exceptions in patchwright."""
    pass

class ConfigurationError(PatchwrightError):
    """Raised when there is a configuration-related error."""
    pass

class SecurityError(PatchwrightError):
    """Raised when a security boundary is violated."""
    pass

class CollaboratorError(PatchwrightError):
    """Raised when a text-generation collaborator fails to produce a usable reply."""

    def __init__(self, message: str, role: str = None):
        super().__init__(message)
        self.role = role

class CollaboratorParseError(CollaboratorError):
    """Raised when a collaborator reply cannot be parsed into the expected record."""

    def __init__(self, message: str, role: str = None, raw: str = None):
        super().__init__(message, role=role)
        self.raw = raw

class CollaboratorTimeout(CollaboratorError):
    """Raised when a collaborator call exceeds its time budget."""
    pass

class RoutingFault(PatchwrightError):
    """Raised when the orchestrator is asked to dispatch an unknown operation."""

    def __init__(self, operation: str):
        super().__init__(f"Unknown operation '{operation}'")
        self.operation = operation


class ContextStoreError(PatchwrightError):
    """Raised when the persistent context store cannot be read or written."""
    pass
