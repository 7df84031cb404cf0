from __future__ import annotations

from dotenv import load_dotenv


def main() -> None:
    """Launch LadderBot from the environment (and ``.env`` if present)."""
    load_dotenv()

    from ladder_bot.config import LadderBotConfig
    from ladder_bot.core.error_engine import ErrorEngine
    from ladder_bot.core.logging_utils import configure_library_logging

    config = LadderBotConfig.from_env()
    configure_library_logging(level=config.log_level)

    error_engine = ErrorEngine()
    error_engine.catch_uncaught()

    from ladder_bot.runner import run_ladder_bot

    run_ladder_bot(config, error_engine)


if __name__ == "__main__":
    main()
