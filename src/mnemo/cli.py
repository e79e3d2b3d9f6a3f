"""Interactive command-line interface."""

import logging
import os
import uuid

from .agent import RuntimeRegistry
from .config import Settings

BANNER = """
mnemo - conversational agent with long-term memory

Commands:
  /exit, /quit  - Exit the CLI
  /clear        - Clear this session's history
  /memories     - Show what is known about you
  /sweep        - Run memory retention now
  /help         - Show this help
"""


class CLI:
    """Interactive REPL over a RuntimeRegistry."""

    def __init__(self, registry: RuntimeRegistry, user_id: str) -> None:
        self.registry = registry
        self.user_id = user_id
        self.session_id = uuid.uuid4().hex

    async def _handle_command(self, command: str) -> bool:
        """Handle a special command. Returns True if should continue, False to exit."""
        cmd = command.lower().strip()

        if cmd in ("/exit", "/quit", "exit", "quit"):
            print("\nGoodbye!")
            return False

        if cmd == "/clear":
            runtime = self.registry.get_runtime(self.session_id)
            if runtime is not None:
                runtime.clear_history()
            print("History cleared.")
            return True

        if cmd == "/memories":
            facts = self.registry.store.list_by_user(self.user_id, limit=20)
            if not facts:
                print("Nothing remembered yet.")
            for fact in facts:
                print(f"  [{fact.importance:.1f}] {fact.content}")
            return True

        if cmd == "/sweep":
            result = self.registry.sweep(self.user_id)
            print(f"Removed {result.total} memories ({result.aged_out} aged out, {result.evicted} evicted).")
            return True

        if cmd == "/help":
            print(BANNER)
            return True

        return True  # Unknown command, continue

    async def run(self) -> None:
        """Run the interactive CLI."""
        print(BANNER)
        print(f"Session: {self.session_id}\n")

        try:
            while True:
                try:
                    user_input = input("you> ").strip()
                except (KeyboardInterrupt, EOFError):
                    print("\nGoodbye!")
                    break

                if not user_input:
                    continue

                if user_input.startswith("/") or user_input.lower() in ("exit", "quit"):
                    if not await self._handle_command(user_input):
                        break
                    continue

                try:
                    result = await self.registry.run(
                        self.user_id, user_input, session_id=self.session_id
                    )
                    print(f"\n{result.content}\n")
                except Exception as e:
                    print(f"\nError: {e}\n")
        finally:
            await self.registry.shutdown()


async def run_cli() -> None:
    """Run the CLI with configuration from the environment."""
    logging.basicConfig(
        level=os.getenv("MNEMO_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings.from_env()
    if not settings.groq_api_key:
        print("Error: GROQ_API_KEY environment variable not set")
        print("Please set it in your .env file or environment")
        return

    registry = RuntimeRegistry.from_settings(settings)
    cli = CLI(registry, user_id=os.getenv("MNEMO_USER_ID", os.getenv("USER", "local")))
    await cli.run()
