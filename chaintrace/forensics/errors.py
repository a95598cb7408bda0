"""Error taxonomy for chain data acquisition and graph expansion."""

from __future__ import annotations

from typing import Optional


class ForensicError(RuntimeError):
    pass


class InputRejected(ForensicError):
    """Identifier matches no supported address/transaction/block pattern."""


class NotFound(ForensicError):
    """Upstream provider reports the identifier does not exist."""


class ProviderError(ForensicError):
    def __init__(self, message: str, provider: str = "", status: Optional[int] = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class ProviderTimeout(ProviderError):
    pass


class AllProvidersFailed(ForensicError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class PartialBranchFailure(ForensicError):
    """One item inside a larger expansion could not be processed."""

    def __init__(self, entity_id: str, cause: BaseException) -> None:
        super().__init__(f"{entity_id}: {cause}")
        self.entity_id = entity_id
        self.cause = cause
