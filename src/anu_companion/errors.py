from __future__ import annotations


class EngineError(Exception):
    """Base class for failures the engines catch and turn into a next state."""


class TransportFailure(EngineError):
    """The completion or extraction service could not be reached (network, timeout, rate limit)."""


class ModelRejection(EngineError):
    """The service answered but explicitly reported failure or returned nothing usable."""


class MalformedCompletion(ModelRejection):
    """The reply could not be parsed into the expected JSON shape."""


class QuotaExceeded(EngineError):
    def __init__(self, limit: int):
        super().__init__(f"Daily message limit of {limit} reached")
        self.limit = limit


class MissingFlowDefinition(EngineError):
    def __init__(self, descriptor: str):
        super().__init__(f"No exercise flow for {descriptor!r}")
        self.descriptor = descriptor


class SummarizationFailure(EngineError):
    """A {summary, keyInsights} artifact could not be produced."""
