"""
Error types for Gym KPI Hub.

    HubError
    ├── APIError                  store or service call refused
    │   └── CircuitOpenError
    └── DataError
        ├── ConfigError           vocabulary / settings file problems
        ├── SchemaValidationError one event row cannot be parsed
        └── DataFetchError        store read failed after retries
            └── ScopeUnavailableError

Bad event data is never fatal: numbers fall back to 0 and unparseable
rows are skipped. Only configuration and store problems are raised.
"""


class HubError(Exception):
    code = "HUB_ERROR"

    def __init__(self, message: str, **details):
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}
        super().__init__(f"[{self.code}] {message}")


class APIError(HubError):
    code = "API_ERROR"


class CircuitOpenError(APIError):
    """Reads against a service are blocked by its circuit breaker."""

    code = "CIRCUIT_OPEN"

    def __init__(self, service: str, failures: int, reset_in: float):
        self.service = service
        self.reset_in = reset_in
        super().__init__(
            f"'{service}' blocked after {failures} failure(s), trial read in {reset_in:.0f}s",
            service=service, failures=failures,
        )


class DataError(HubError):
    code = "DATA_ERROR"


class ConfigError(DataError):
    code = "CONFIG_ERROR"

    def __init__(self, message: str, config_path: str = None):
        super().__init__(message, config_path=config_path)


class SchemaValidationError(DataError):
    code = "SCHEMA_INVALID"

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, field=field)


class DataFetchError(DataError):
    code = "DATA_FETCH_FAILED"

    def __init__(self, message: str, source: str = None):
        super().__init__(message, source=source)


class ScopeUnavailableError(DataFetchError):
    """The tenant/period scope is not valid or could not be read."""

    code = "SCOPE_UNAVAILABLE"

    def __init__(self, tenant_id: str = None, reason: str = "scope unavailable"):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"tenant {tenant_id!r}: {reason}", source="raw_entries")
