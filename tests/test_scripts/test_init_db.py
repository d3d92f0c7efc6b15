"""Tests for the schema initialization script."""

import pytest
from unittest.mock import patch
from sqlalchemy import inspect

from resume_billing.scripts import init_db as init_db_script


@pytest.mark.asyncio
async def test_init_db_creates_tables(engine):
    with patch.object(init_db_script, "engine", engine):
        await init_db_script.init_db(drop=True)

    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    assert {"users", "credit_ledger_entries", "subscriptions", "transactions",
            "processed_stripe_events", "app_settings", "resumes"} <= set(tables)


def test_main_passes_drop_flag():
    with patch.object(init_db_script, "init_db") as mock_init, \
            patch.object(init_db_script.asyncio, "run") as mock_run, \
            patch.object(init_db_script.sys, "argv", ["init_db", "--drop"]):
        init_db_script.main()

    mock_init.assert_called_once_with(drop=True)
    mock_run.assert_called_once()
