"""Expired session reaper service."""

import asyncio
import logging

from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def run_reaper_once(app_obj: FastAPI) -> int:
    """Drop expired session records and tear down the instances they still held."""
    removed = await app_obj.state.sandbox_manager.reap_expired()
    return len(removed)


async def expiry_reaper_loop(app_obj: FastAPI) -> None:
    """Background task that periodically sweeps expired sessions."""
    interval = app_obj.state.sandbox_manager.policy.sweep_interval_sec
    while True:
        await asyncio.sleep(interval)
        try:
            count = await run_reaper_once(app_obj)
            if count > 0:
                logger.info("Reaped %d expired session(s)", count)
        except Exception:
            logger.exception("Expiry reaper pass failed")
