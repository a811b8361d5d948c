from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    BigInteger,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

# Token amounts exceed 64 bits, so balances and amounts are stored as decimal strings.
AMOUNT_LENGTH = 80


class TrackedToken(Base):
    __tablename__ = "tracked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    mint_address = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    decimals = Column(Integer, nullable=False, default=0)
    chain = Column(String, nullable=False)  # solana, ethereum

    accounts = relationship("TrackedTokenAccount", back_populates="token")

    __table_args__ = (
        UniqueConstraint("mint_address", "chain", name="uix_tracked_token_mint_chain"),
    )


class TrackedTokenAccount(Base):
    __tablename__ = "tracked_token_accounts"

    id = Column(Integer, primary_key=True, index=True)
    address = Column(String, nullable=False, index=True)
    owner_address = Column(String, nullable=True)
    tracked_token_id = Column(Integer, ForeignKey("tracked_tokens.id"), nullable=False, index=True)
    # Earliest known activity, lowered when an earlier day is discovered later
    first_transaction_date = Column(DateTime(timezone=True), nullable=False)

    token = relationship("TrackedToken", back_populates="accounts")

    __table_args__ = (
        UniqueConstraint("address", "tracked_token_id", name="uix_tracked_account_address_token"),
    )


class AccountBalanceSnapshot(Base):
    __tablename__ = "tracked_token_account_balances"

    id = Column(Integer, primary_key=True, index=True)
    tracked_token_account_id = Column(Integer, ForeignKey("tracked_token_accounts.id"), nullable=False, index=True)
    datetime = Column(DateTime(timezone=True), nullable=False, index=True)
    approximate_minimum_balance = Column(String(AMOUNT_LENGTH), nullable=False)

    __table_args__ = (
        UniqueConstraint("tracked_token_account_id", "datetime", name="uix_account_balance_day"),
    )


class AccountBalanceChange(Base):
    __tablename__ = "tracked_token_account_balance_changes"

    id = Column(Integer, primary_key=True, index=True)
    tracked_token_account_id = Column(Integer, ForeignKey("tracked_token_accounts.id"), nullable=False, index=True)
    datetime = Column(DateTime(timezone=True), nullable=False)
    approximate_minimum_balance = Column(String(AMOUNT_LENGTH), nullable=False)

    __table_args__ = (
        UniqueConstraint("tracked_token_account_id", "datetime", name="uix_account_balance_change_day"),
    )


class AccountTransaction(Base):
    __tablename__ = "tracked_token_account_transactions"

    id = Column(Integer, primary_key=True, index=True)
    tracked_token_account_id = Column(Integer, ForeignKey("tracked_token_accounts.id"), nullable=False, index=True)
    datetime = Column(DateTime(timezone=True), nullable=False)
    transaction_datetime = Column(DateTime(timezone=True), nullable=False)
    transaction_hash = Column(String, nullable=False)
    amount = Column(String(AMOUNT_LENGTH), nullable=False)
    transfer_in = Column(Boolean, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tracked_token_account_id", "transaction_hash", "transfer_in",
            name="uix_account_transaction_direction",
        ),
    )


class LiquidityPool(Base):
    __tablename__ = "liquidity_pools"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    collateral_token_account = Column(String, nullable=False)
    collateral_token_account_owner = Column(String, nullable=True)
    collateral_token_id = Column(Integer, ForeignKey("tracked_tokens.id"), nullable=False)

    collateral_token = relationship("TrackedToken")


class LiquidityPoolBalance(Base):
    __tablename__ = "liquidity_pool_balances"

    id = Column(Integer, primary_key=True, index=True)
    liquidity_pool_id = Column(Integer, ForeignKey("liquidity_pools.id"), nullable=False, index=True)
    datetime = Column(DateTime(timezone=True), nullable=False)
    balance = Column(String(AMOUNT_LENGTH), nullable=False)

    __table_args__ = (
        UniqueConstraint("liquidity_pool_id", "datetime", name="uix_pool_balance_day"),
    )


class ContractEvent(Base):
    __tablename__ = "contract_events"

    id = Column(Integer, primary_key=True, index=True)
    contract_address = Column(String, nullable=False, index=True)
    block_number = Column(BigInteger, nullable=False, index=True)
    transaction_hash = Column(String, nullable=False)
    log_index = Column(Integer, nullable=False)
    topics = Column(JSON, nullable=True)
    data = Column(String, nullable=True)
    gas_used = Column(BigInteger, nullable=True)
    status = Column(Integer, nullable=True)  # receipt status, 1 success, 0 reverted

    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uix_contract_event_log"),
    )


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    job_name = Column(String, unique=True, index=True, nullable=False)
    last_status = Column(String, nullable=False)  # success, failure
    records_processed = Column(Integer, default=0)
    run_duration_ms = Column(Integer, default=0)
    error_log = Column(String, nullable=True)
    last_target_date = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
