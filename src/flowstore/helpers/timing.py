"""Timing helpers."""
import asyncio
from typing import Any


async def delay(seconds: float, value: Any = None) -> Any:
    """Sleep for the given number of seconds, then return value."""
    await asyncio.sleep(seconds)
    return value
