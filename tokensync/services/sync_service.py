from tokensync.ingestion.pipeline import run_daily_sync

async def trigger_daily_sync():
    """
    Triggers the daily sync (pool balances, then account discovery).
    """
    # Scheduling lives outside the service (cron); this only runs one pass.
    return await run_daily_sync()
