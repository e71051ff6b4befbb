from __future__ import annotations

from unittest.mock import patch

import pytest

import main
from outagebot.config import Settings


def _settings(admin_chat_id: str | None = "999") -> Settings:
    return Settings(
        telegram_bot_token="TEST_TOKEN",
        telegram_admin_chat_id=admin_chat_id,
        check_interval_seconds=1,
        state_file=":memory:",
    )


def test_main_sends_start_and_shutdown_messages_in_once_mode() -> None:
    settings = _settings()

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.run_check_once") as run_once,
        patch("main._send_status_message") as send_status,
        patch("main.argparse.ArgumentParser.parse_args", return_value=type("Args", (), {"once": True})()),
    ):
        assert main.main() == 0
        run_once.assert_called_once_with(settings)

        # startup + shutdown
        assert send_status.call_count == 2
        assert "Outage bot started" in send_status.call_args_list[0].kwargs["text"]
        assert "Outage bot stopped" in send_status.call_args_list[1].kwargs["text"]


def test_main_sends_crash_and_shutdown_messages_on_error() -> None:
    settings = _settings()

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.run_forever", side_effect=RuntimeError("boom")),
        patch("main._send_status_message") as send_status,
        patch("main.argparse.ArgumentParser.parse_args", return_value=type("Args", (), {"once": False})()),
    ):
        with pytest.raises(RuntimeError):
            main.main()

        # startup + crash + shutdown
        assert send_status.call_count == 3
        assert "crashed" in send_status.call_args_list[1].kwargs["text"]


def test_status_messages_go_to_admin_chat_only() -> None:
    with patch("main.send_telegram_message") as send_msg:
        main._send_status_message(_settings(admin_chat_id=None), text="hi")
        send_msg.assert_not_called()

        main._send_status_message(_settings(admin_chat_id="999"), text="hi")
        send_msg.assert_called_once_with(bot_token="TEST_TOKEN", chat_id="999", text="hi")
