from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tokensync.core import database
from tokensync.db.models import AccountBalanceSnapshot, SyncRun, TrackedToken, TrackedTokenAccount
from tokensync.main import app

@pytest_asyncio.fixture
async def async_client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

@pytest.mark.asyncio
async def test_health_before_any_sync(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["db_connectivity"] == "connected"
    assert data["sync_status"] == "no_runs_yet"

@pytest.mark.asyncio
async def test_health_reports_failed_job(async_client):
    async with database.AsyncSessionLocal() as session:
        session.add(SyncRun(job_name="tracked_token_accounts", last_status="success", records_processed=4))
        session.add(SyncRun(job_name="liquidity_pool_balances", last_status="failure", error_log="rpc down"))
        await session.commit()

    response = await async_client.get("/health")
    data = response.json()
    assert data["sync_status"] == "failure"
    assert data["jobs"] == {"tracked_token_accounts": "success", "liquidity_pool_balances": "failure"}

    runs = (await async_client.get("/runs")).json()
    assert [run["job_name"] for run in runs] == ["liquidity_pool_balances", "tracked_token_accounts"]
    assert runs[0]["error_log"] == "rpc down"

@pytest.mark.asyncio
async def test_tokens_expose_snapshot_watermark(async_client):
    async with database.AsyncSessionLocal() as session:
        token = TrackedToken(mint_address="tokenmint00000", display_name="TEST", decimals=6, chain="solana")
        idle = TrackedToken(mint_address="0xtoken", decimals=18, chain="ethereum")
        session.add_all([token, idle])
        await session.flush()
        account = TrackedTokenAccount(
            address="acct1",
            tracked_token_id=token.id,
            first_transaction_date=datetime(2022, 5, 1, tzinfo=timezone.utc),
        )
        session.add(account)
        await session.flush()
        for day in (1, 2):
            session.add(AccountBalanceSnapshot(
                tracked_token_account_id=account.id,
                datetime=datetime(2022, 6, day, tzinfo=timezone.utc),
                approximate_minimum_balance="10",
            ))
        await session.commit()

    response = await async_client.get("/tokens")
    assert response.status_code == 200
    tokens = {t["mint_address"]: t for t in response.json()}
    assert tokens["tokenmint00000"]["watermark"].startswith("2022-06-02T00:00:00")
    assert tokens["0xtoken"]["watermark"] is None

@pytest.mark.asyncio
async def test_inverted_balance_range_is_a_bad_request(async_client):
    response = await async_client.post(
        "/sync/balances", json={"earliest": "2022-06-03", "latest": "2022-06-01"}
    )
    assert response.status_code == 400
    assert "before" in response.json()["detail"]

@pytest.mark.asyncio
async def test_malformed_end_date_is_a_bad_request(async_client):
    response = await async_client.post("/sync/accounts", json={"end_date": "June 1st"})
    assert response.status_code == 400
