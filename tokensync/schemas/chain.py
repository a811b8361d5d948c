"""
Parsed JSON-RPC results for Solana and EVM nodes.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _RpcModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- Solana getTransaction ---

class UiTokenAmount(_RpcModel):
    amount: str
    decimals: Optional[int] = None


class TokenBalance(_RpcModel):
    account_index: int = Field(alias="accountIndex")
    mint: str
    owner: Optional[str] = None
    ui_token_amount: UiTokenAmount = Field(alias="uiTokenAmount")


class SolanaTransactionMeta(_RpcModel):
    err: Optional[Any] = None
    post_token_balances: List[TokenBalance] = Field(default_factory=list, alias="postTokenBalances")
    pre_token_balances: List[TokenBalance] = Field(default_factory=list, alias="preTokenBalances")


class SolanaMessage(_RpcModel):
    account_keys: List[str] = Field(default_factory=list, alias="accountKeys")


class SolanaTransactionBody(_RpcModel):
    signatures: List[str] = Field(default_factory=list)
    message: SolanaMessage


class SolanaTransaction(_RpcModel):
    slot: Optional[int] = None
    block_time: Optional[int] = Field(None, alias="blockTime")
    meta: Optional[SolanaTransactionMeta] = None
    transaction: SolanaTransactionBody

    @property
    def succeeded(self) -> bool:
        return self.meta is not None and self.meta.err is None

    @property
    def account_keys(self) -> List[str]:
        return self.transaction.message.account_keys

    @property
    def post_token_balances(self) -> List[TokenBalance]:
        return self.meta.post_token_balances if self.meta else []


# --- EVM ---

def hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    return int(value, 16)


class EvmLog(_RpcModel):
    address: str
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"
    block_number: str = Field(alias="blockNumber")
    transaction_hash: str = Field(alias="transactionHash")
    log_index: str = Field(alias="logIndex")
    removed: bool = False


class EvmReceipt(_RpcModel):
    transaction_hash: str = Field(alias="transactionHash")
    block_number: str = Field(alias="blockNumber")
    gas_used: Optional[str] = Field(None, alias="gasUsed")
    status: Optional[str] = None
    logs: List[EvmLog] = Field(default_factory=list)
