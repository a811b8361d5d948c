"""
Response models for the event-source (bitquery) GraphQL queries.
Rows are validated one by one at the transport boundary.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tokensync.core.dates import parse_iso8601


class _Node(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Iso8601(_Node):
    iso8601: datetime

    @field_validator("iso8601", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        if isinstance(v, str):
            return parse_iso8601(v)
        return v


class Block(_Node):
    height: Optional[int] = None
    timestamp: Iso8601


class SolanaParty(_Node):
    address: str
    mint_account: Optional[str] = Field(None, alias="mintAccount")
    type: Optional[str] = None


class SolanaTransactionRef(_Node):
    signature: str
    success: bool = True


class SolanaTransfer(_Node):
    amount: Decimal
    transfer_type: Optional[str] = Field(None, alias="transferType")
    transaction: SolanaTransactionRef
    sender: SolanaParty
    receiver: SolanaParty
    block: Block

    @property
    def timestamp(self) -> datetime:
        return self.block.timestamp.iso8601


class EthereumParty(_Node):
    address: str


class EthereumTransactionRef(_Node):
    hash: str


class EthereumTransfer(_Node):
    amount: Decimal
    transaction: EthereumTransactionRef
    sender: EthereumParty
    receiver: EthereumParty
    block: Block

    @property
    def timestamp(self) -> datetime:
        return self.block.timestamp.iso8601


class LatestSolanaTransfer(_Node):
    transaction: SolanaTransactionRef
    block: Block

    @property
    def timestamp(self) -> datetime:
        return self.block.timestamp.iso8601


class LatestEthereumTransfer(_Node):
    transaction: EthereumTransactionRef
    block: Block

    @property
    def timestamp(self) -> datetime:
        return self.block.timestamp.iso8601
