"""
Offline console demo: runs full quote conversations without any API keys.

Uses the real orchestrator, state machine, session store and decision
engine. Quotes come from local rate tables and sessions live in memory,
so there are no network calls. Designed for live demo walkthroughs.

Usage:
    python console_demo.py
    python console_demo.py --scenario heavy
    python console_demo.py --scenario recovery
"""

import argparse
import asyncio
from decimal import Decimal

from freightbot.app import Runtime, build_runtime
from freightbot.config import settings
from freightbot.freight.audit import InMemorySimulationSink
from freightbot.freight.providers import DEFAULT_HEAVY_TABLE, RateTableProvider, RateTableRow
from freightbot.storage.backends import InMemoryBackend

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

DEMO_TENANT = "loja-demo"
DEMO_USER = "5511999990000"

# Stand-in for the parcel API so the demo stays offline.
DEMO_LIGHT_TABLE = [
    RateTableRow("Correios", "PAC", 30, Decimal("18.90"), Decimal("1.20"), 8),
    RateTableRow("Correios", "SEDEX", 30, Decimal("32.50"), Decimal("2.10"), 3),
    RateTableRow("Jadlog", ".Package", 30, Decimal("22.40"), Decimal("1.50"), 5),
]


class ConsoleSession:
    """Plays a quote conversation in the terminal."""

    # Pre-scripted scenarios for --scenario flag
    SCENARIOS: dict[str, list[str]] = {
        "quote": [
            "Oi, quero calcular o frete",
            "01310-100",
            "5",
        ],
        "mixed": [
            "Quanto custa o envio?",
            "20040020",
            "40",
        ],
        "heavy": [
            "cotação",
            "80035-050",
            "60",
        ],
        "recovery": [
            "onde está meu pedido?",
            "frete",
            "ajuda",
            "não sei",
            "01001-000",
            "cancelar",
            "frete",
            "30140-071",
            "3",
        ],
    }

    MAX_INPUT_LENGTH = 500

    def __init__(self) -> None:
        self.sink = InMemorySimulationSink()
        self.runtime: Runtime = build_runtime(
            settings,
            backend=InMemoryBackend(),
            light_provider=RateTableProvider(DEMO_LIGHT_TABLE, name="demo_parcels"),
            heavy_provider=RateTableProvider(DEFAULT_HEAVY_TABLE),
            sink=self.sink,
        )

    def bot_say(self, text: str, success: bool = True) -> None:
        colour = GREEN if success else YELLOW
        print(f"{colour}{BOLD}[FreightBot]{RESET} {colour}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    async def log_state(self) -> None:
        record = await self.runtime.session_store.get(DEMO_TENANT, DEMO_USER)
        if record is None:
            self.system_log("Session: none")
        else:
            self.system_log(
                f"State: {record.state.value} "
                f"(destination={record.destination}, quantity={record.quantity})"
            )

    async def send(self, text: str) -> None:
        reply = await self.runtime.orchestrator.process_message(DEMO_TENANT, DEMO_USER, text)
        self.bot_say(reply.reply, reply.success)
        await self.log_state()

    def _banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  FREIGHTBOT - {title}{RESET}")
        print(f"{BOLD}  Tenant: {DEMO_TENANT}  User: {DEMO_USER}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    def _summary(self) -> None:
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{DIM}  Simulations recorded: {len(self.sink.records)}{RESET}")
        for record in self.sink.records:
            print(
                f"{DIM}    {record.destination} {record.total_weight} kg "
                f"-> {record.best_carrier} {record.best_service} "
                f"R$ {record.best_price} ({record.strategy.value}){RESET}"
            )
        print(f"{BOLD}{'=' * 60}{RESET}")

    async def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return

        self._banner(f"Scenario: {scenario}")
        try:
            for step in steps:
                print(f"\n{BLUE}[Customer] {RESET}{step}")
                await self.send(step)
        finally:
            await self.runtime.aclose()
        self._summary()

    async def run(self) -> None:
        self._banner("Console Demo (type 'quit' to exit)")
        self.runtime.start()
        try:
            while True:
                user_input = input(f"\n{BLUE}[Customer] {RESET}").strip()
                if not user_input:
                    continue
                if user_input.lower() in ("quit", "exit", "q"):
                    print(f"\n{DIM}Session ended.{RESET}")
                    break
                if len(user_input) > self.MAX_INPUT_LENGTH:
                    self.bot_say("Mensagem muito longa. Pode resumir?", success=False)
                    continue
                await self.send(user_input)
        finally:
            await self.runtime.aclose()
        self._summary()


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    args = parser.parse_args()

    session = ConsoleSession()
    if args.scenario:
        asyncio.run(session.run_scenario(args.scenario))
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
