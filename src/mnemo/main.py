"""mnemo entry point."""

import asyncio

from dotenv import find_dotenv, load_dotenv

from .cli import run_cli


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))
    asyncio.run(run_cli())


if __name__ == "__main__":
    main()
