"""
Exception hierarchy shared by the ingestion clients and the sync orchestrator.
"""


class TokenSyncError(Exception):
    """Base class for every error raised by tokensync."""


class ConfigurationError(TokenSyncError):
    """An invocation that cannot run as requested. Raised before any write."""


class InvalidDateRangeError(ConfigurationError):
    pass


class BlockRangeError(ConfigurationError):
    pass


class UnsupportedChainError(TokenSyncError):
    def __init__(self, chain):
        super().__init__(f"Unsupported chain: {chain}")
        self.chain = chain


class RpcError(TokenSyncError):
    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class RateLimitError(RpcError):
    pass


class SchemaDriftError(TokenSyncError):
    pass
