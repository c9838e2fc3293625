"""
FreightBot entry point.

Live mode wires the configured stack (Redis sessions and quote cache,
Melhor Envio for light parcels, rate table for heavy loads) and answers
messages typed on stdin as one customer of one tenant. Console mode runs
the offline demo.

Usage:
    Live chat:    python main.py chat <tenant_id> <user_id>
    Console mode: python main.py console
"""

import asyncio
import logging
import sys

from freightbot.app import build_runtime
from freightbot.config import settings

logger = logging.getLogger(__name__)


async def _chat(tenant_id: str, user_id: str) -> None:
    """Answer stdin lines with the live provider stack."""
    if not settings.providers.melhorenvio_token:
        logger.warning("MELHORENVIO_TOKEN is empty; light-parcel quotes will fail")

    runtime = build_runtime(settings)
    runtime.start()
    try:
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            reply = await runtime.orchestrator.process_message(tenant_id, user_id, text)
            print(reply.reply, flush=True)
    finally:
        await runtime.aclose()


def _run_chat_mode(args: list[str]) -> None:
    if len(args) != 2:
        print(__doc__)
        sys.exit(2)
    asyncio.run(_chat(args[0], args[1]))


def _run_console_mode() -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import ConsoleSession

    session = ConsoleSession()
    asyncio.run(session.run())


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "console":
        _run_console_mode()
    elif len(sys.argv) > 1 and sys.argv[1] == "chat":
        _run_chat_mode(sys.argv[2:])
    else:
        print(__doc__)
        sys.exit(2)
