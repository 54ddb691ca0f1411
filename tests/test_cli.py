from __future__ import annotations

from unittest.mock import patch

import pytest

from slotrank.cli import main


class TestCLIParsing:
    def test_no_command_fails(self) -> None:
        with pytest.raises(SystemExit):
            main([])

    def test_help_flag(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--help"])
        assert exc_info.value.code == 0

    def test_migrate_command(self) -> None:
        with patch("slotrank.cli.cmd_migrate") as mock_cmd:
            main(["migrate"])
            mock_cmd.assert_called_once()

    def test_seed_assets_command(self) -> None:
        with patch("slotrank.cli.cmd_seed_assets") as mock_cmd:
            main(["seed-assets"])
            mock_cmd.assert_called_once()

    def test_evaluate_all(self) -> None:
        with patch("slotrank.cli.cmd_evaluate") as mock_cmd:
            main(["evaluate"])
            assert mock_cmd.call_args[0][0].id is None

    def test_evaluate_one(self) -> None:
        with patch("slotrank.cli.cmd_evaluate") as mock_cmd:
            main(["evaluate", "--id", "42"])
            assert mock_cmd.call_args[0][0].id == 42

    def test_rollover_period(self) -> None:
        with patch("slotrank.cli.cmd_rollover") as mock_cmd:
            main(["rollover", "--period", "2026-09"])
            assert mock_cmd.call_args[0][0].period == "2026-09"

    def test_rollover_default_period(self) -> None:
        with patch("slotrank.cli.cmd_rollover") as mock_cmd:
            main(["rollover"])
            assert mock_cmd.call_args[0][0].period is None

    def test_refresh_prices_command(self) -> None:
        with patch("slotrank.cli.cmd_refresh_prices") as mock_cmd:
            main(["refresh-prices"])
            mock_cmd.assert_called_once()

    def test_slots_requires_duration(self) -> None:
        with pytest.raises(SystemExit):
            main(["slots"])

    def test_status_command(self) -> None:
        with patch("slotrank.cli.cmd_status") as mock_cmd:
            main(["status"])
            mock_cmd.assert_called_once()

    def test_serve_defaults(self) -> None:
        with patch("slotrank.cli.cmd_serve") as mock_cmd:
            main(["serve"])
            args = mock_cmd.call_args[0][0]
            assert (args.host, args.port) == ("0.0.0.0", 8000)

    def test_verbose_flag(self) -> None:
        with patch("slotrank.cli.cmd_status") as mock_cmd:
            main(["-v", "status"])
            assert mock_cmd.call_args[0][0].verbose is True


class TestSlotsCommand:
    def test_prints_every_slot(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["slots", "1h", "--tz", "UTC"])
        out = capsys.readouterr().out
        assert out.startswith("1h slots (UTC):")
        assert out.count(" pts") == 4
        assert "*" in out
        assert "10 pts" in out

    def test_unknown_duration(self) -> None:
        from slotrank.errors import ValidationError

        with pytest.raises(ValidationError):
            main(["slots", "5h", "--tz", "UTC"])
