class RecreateError(Exception):
    def __init__(self, message: str, code: str, http_status: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status


class AuthError(RecreateError):
    def __init__(self) -> None:
        super().__init__(
            message="Authentication failed",
            code="AUTH_FAILED",
            http_status=401,
        )


class MalformedInputError(RecreateError):
    def __init__(self, message: str, code: str = "SCHEMA_INVALID") -> None:
        super().__init__(message=message, code=code, http_status=400)


class ServicesUnavailableError(RecreateError):
    def __init__(self) -> None:
        super().__init__(
            message="Management backends are not configured",
            code="SERVICES_UNAVAILABLE",
            http_status=503,
        )


class EntityNotFoundError(RecreateError):
    def __init__(self, name: str) -> None:
        super().__init__(message=f"Database '{name}' not found", code="ENTITY_NOT_FOUND", http_status=404)
        self.name = name


class PreconditionFailedError(RecreateError):
    def __init__(self, check: str, message: str) -> None:
        super().__init__(message=message, code="PRECONDITION_FAILED", http_status=409)
        self.check = check


class TopologyUnavailableError(RecreateError):
    def __init__(self, message: str = "Replica topology could not be listed") -> None:
        super().__init__(message=message, code="TOPOLOGY_UNAVAILABLE", http_status=502)


class ConvergenceTimeoutError(RecreateError):
    def __init__(self, step: str, timeout: float) -> None:
        super().__init__(
            message=f"{step} did not converge within {timeout:g}s",
            code="CONVERGENCE_TIMEOUT",
            http_status=504,
        )
        self.step = step
        self.timeout = timeout


class DestructivePhaseError(RecreateError):
    def __init__(self, phase: str, message: str) -> None:
        super().__init__(
            message=f"Phase '{phase}' failed: {message}",
            code="DESTRUCTIVE_PHASE_FAILED",
            http_status=500,
        )
        self.phase = phase


class RunInProgressError(RecreateError):
    def __init__(self, name: str) -> None:
        super().__init__(
            message=f"Another recreation run holds the lease for '{name}'",
            code="RUN_IN_PROGRESS",
            http_status=409,
        )
        self.name = name
