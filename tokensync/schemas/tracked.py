from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class AccountTransactionInfo(BaseModel):
    hash: str
    transaction_datetime: datetime
    amount: int  # base units


class TrackedTokenAccountInfo(BaseModel):
    """One account observed by a discovery run for a single day window."""
    address: str
    owner_address: Optional[str] = None
    # None when neither the chain nor the previous snapshot could provide a value
    approximate_minimum_balance: Optional[int] = None
    incoming_transactions: Dict[str, AccountTransactionInfo] = Field(default_factory=dict)
    outgoing_transactions: Dict[str, AccountTransactionInfo] = Field(default_factory=dict)

    @property
    def first_transaction_date(self) -> Optional[datetime]:
        dates = [t.transaction_datetime for t in self.incoming_transactions.values()]
        dates += [t.transaction_datetime for t in self.outgoing_transactions.values()]
        return min(dates) if dates else None


class TokenBalanceDate(BaseModel):
    date: datetime
    balance: int
