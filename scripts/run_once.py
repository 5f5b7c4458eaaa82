#!/usr/bin/env python3
"""Run a single scan outside the scheduler and print its outcome.

Usage:
    python scripts/run_once.py          # uses settings from env / .env
    LOCAL_POOL_DIR=./samples python scripts/run_once.py
"""
from __future__ import annotations

import asyncio
import json
import sys

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from phiscan.core.logging import setup_logging
from phiscan.core.settings import get_settings
from phiscan.pipeline.dag import run_pipeline
from phiscan.pipeline.runtime import build_runtime


async def main() -> int:
    setup_logging()
    runtime = await build_runtime(get_settings())
    try:
        outcome = await run_pipeline(runtime.pipeline)
    finally:
        await runtime.close()

    print(json.dumps({"ok": outcome.ok, **outcome.summary()}, indent=2))
    return 0 if outcome.ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
