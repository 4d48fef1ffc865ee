class SearchError(Exception):
    """Base class for search subsystem errors."""


class ParameterLimitExceeded(SearchError):
    """A statement would bind more parameters than the store accepts."""

    def __init__(self, count: int, ceiling: int):
        super().__init__(f"Statement needs {count} bound parameters (ceiling {ceiling})")
        self.count = count
        self.ceiling = ceiling


class IndexUnavailable(SearchError):
    """The coverage index is missing or unhealthy; callers fall back."""


class QueryExecutionFailure(SearchError):
    """The store rejected an assembled search statement."""
