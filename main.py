#!/usr/bin/env python3
import asyncio, signal, sys
from config.logging_config import configure
from config.app_config import settings
from iot_bridge.orchestration import BridgeOrchestrator

async def async_main() -> int:
    configure()
    orchestrator = BridgeOrchestrator(settings)
    if not await orchestrator.startup():
        await orchestrator.shutdown()
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:          # windows: KeyboardInterrupt still works
            pass

    try:
        await stop.wait()
    finally:
        await orchestrator.shutdown(settings.SHUTDOWN_TIMEOUT)
    return 0

if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(async_main()))
    except KeyboardInterrupt:
        sys.exit("🌙  graceful shutdown")
