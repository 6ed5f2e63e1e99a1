"""Main entry point for the bot."""
from dictbot.app import DictBot
from dictbot.config import ensure_directories
from dictbot.logging_config import setup_logging


def main() -> None:
    """Run the bot."""
    # Ensure all required directories exist
    ensure_directories()

    setup_logging("Starting DictBot ...")

    DictBot().run()


if __name__ == "__main__":
    main()
