import argparse
import logging

from outagebot.config import Settings, load_settings
from outagebot.runtime import run_check_once, run_forever
from outagebot.scheduler import describe_interval
from outagebot.telegram_notifier import send_telegram_message


def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _send_status_message(settings: Settings, text: str) -> None:
    # Status messages only go to the admin chat, if one is configured.
    if not settings.telegram_admin_chat_id:
        return
    send_telegram_message(
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_admin_chat_id,
        text=text,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Outage schedule watcher bot")
    parser.add_argument("--once", action="store_true", help="Run a single check of all watching chats and exit")
    args = parser.parse_args()

    settings = load_settings()
    _setup_logging(settings.log_level)

    # Startup notice (best-effort)
    try:
        _send_status_message(
            settings,
            text=(
                "Outage bot started.\n"
                f"Mode: {'once' if args.once else 'forever'}\n"
                f"interval={describe_interval(settings)}"
            ),
        )
    except Exception:
        logging.getLogger(__name__).warning("Failed to send Telegram startup message", exc_info=True)

    try:
        if args.once:
            run_check_once(settings)
            return 0

        run_forever(settings)
        return 0

    except Exception as e:
        # Crash notice (best-effort)
        try:
            _send_status_message(
                settings,
                text=(
                    "Outage bot crashed.\n"
                    f"Reason: {type(e).__name__}: {e}"
                ),
            )
        except Exception:
            logging.getLogger(__name__).warning("Failed to send Telegram crash message", exc_info=True)
        raise

    finally:
        # Shutdown notice (best-effort)
        try:
            _send_status_message(settings, text="Outage bot stopped.")
        except Exception:
            logging.getLogger(__name__).warning("Failed to send Telegram shutdown message", exc_info=True)


if __name__ == "__main__":
    raise SystemExit(main())
