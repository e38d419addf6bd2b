"""Unit tests for the main entry point.

Tests the main() function including:
- CLI argument parsing
- Configuration loading with priority (CLI > env > config)
- One-shot runs and their exit codes
- Daemon mode wiring
- Error handling
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from regnotify.alerts.models import AlertRunResult
from regnotify.config.environment import EnvironmentConfig
from regnotify.config.exceptions import ConfigurationError
from regnotify.config.loader import parse_app_config
from regnotify.config.models import AppConfig
from regnotify.main import load_runtime_config, main, parse_args, run_single
from regnotify.notifications.models import QueueRunResult


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])

        assert args.config is None
        assert args.log_level is None
        assert args.run is None
        assert args.serve is False
        assert args.check_config is False
        assert args.host == "0.0.0.0"
        assert args.port == 8000

    def test_run_and_config(self):
        args = parse_args(["--run", "alerts", "--config", "prod.yaml", "--log-level", "DEBUG"])

        assert args.run == "alerts"
        assert args.config == Path("prod.yaml")
        assert args.log_level == "DEBUG"

    def test_run_and_serve_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--run", "queue", "--serve"])

    def test_unknown_pipeline_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["--run", "everything"])

    def test_check_config_is_exclusive_with_run(self):
        with pytest.raises(SystemExit):
            parse_args(["--check-config", "--run", "queue"])


class TestLoadRuntimeConfig:
    """Test suite for load_runtime_config helper."""

    def test_cli_overrides_environment(self):
        with patch("regnotify.main.load_config") as mock_load:
            mock_load.return_value = (AppConfig(), EnvironmentConfig(log_level="WARNING"))

            _, env_config = load_runtime_config(None, "DEBUG")

        assert env_config.log_level == "DEBUG"

    def test_environment_overrides_config_file(self):
        app_config = parse_app_config({"logging": {"level": "ERROR"}})
        with patch("regnotify.main.load_config") as mock_load:
            mock_load.return_value = (app_config, EnvironmentConfig(log_level="WARNING"))

            _, env_config = load_runtime_config(None, None)

        assert env_config.log_level == "WARNING"

    def test_config_file_used_last(self):
        app_config = parse_app_config({"logging": {"level": "ERROR"}})
        with patch("regnotify.main.load_config") as mock_load:
            mock_load.return_value = (app_config, EnvironmentConfig())

            _, env_config = load_runtime_config(Path("config.yaml"), None)

        assert env_config.log_level == "ERROR"
        mock_load.assert_called_once_with(Path("config.yaml"))


class TestRunSingle:
    def test_queue_run_without_errors(self):
        services = MagicMock()
        services.queue_processor.run_once.return_value = QueueRunResult(processed=3, errors=0)

        assert run_single(services, "queue") == 0
        services.alert_manager.run_once.assert_not_called()

    def test_queue_run_with_errors(self):
        services = MagicMock()
        services.queue_processor.run_once.return_value = QueueRunResult(processed=3, errors=1)

        assert run_single(services, "queue") == 1

    def test_alert_run(self):
        services = MagicMock()
        services.alert_manager.run_once.return_value = AlertRunResult(detected=2, notified=2, resolved=1)

        assert run_single(services, "alerts") == 0
        services.queue_processor.run_once.assert_not_called()


class TestMain:
    @patch("regnotify.main.run_single", return_value=0)
    @patch("regnotify.main.build_services")
    @patch("regnotify.main.init_database")
    @patch("regnotify.main.close_database")
    @patch("regnotify.main.configure_logging")
    @patch("regnotify.main.load_runtime_config")
    def test_manual_run(
        self,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build_services,
        mock_run_single,
    ):
        mock_load_config.return_value = (AppConfig(), EnvironmentConfig(log_level="INFO"))

        exit_code = main(["--run", "queue", "--config", "config.yaml"])

        assert exit_code == 0
        mock_load_config.assert_called_once_with(Path("config.yaml"), None)
        mock_configure_logging.assert_called_once_with(
            level="INFO", format_type="key-value", environment="local"
        )
        mock_init_db.assert_called_once_with("sqlite:///./data/regnotify.db")
        mock_run_single.assert_called_once_with(mock_build_services.return_value, "queue")
        mock_close_db.assert_called_once()

    @patch("regnotify.main.run_single", return_value=1)
    @patch("regnotify.main.build_services")
    @patch("regnotify.main.init_database")
    @patch("regnotify.main.close_database")
    @patch("regnotify.main.configure_logging")
    @patch("regnotify.main.load_runtime_config")
    def test_manual_run_exit_code_propagates(
        self,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build_services,
        mock_run_single,
    ):
        mock_load_config.return_value = (AppConfig(), EnvironmentConfig(log_level="INFO"))

        assert main(["--run", "queue"]) == 1
        mock_close_db.assert_called_once()

    @patch("regnotify.main.build_scheduler")
    @patch("regnotify.main.build_services")
    @patch("regnotify.main.init_database")
    @patch("regnotify.main.close_database")
    @patch("regnotify.main.configure_logging")
    @patch("regnotify.main.load_runtime_config")
    @patch("signal.signal")
    def test_daemon_mode(
        self,
        mock_signal,
        mock_load_config,
        mock_configure_logging,
        mock_close_db,
        mock_init_db,
        mock_build_services,
        mock_build_scheduler,
    ):
        mock_load_config.return_value = (AppConfig(), EnvironmentConfig(log_level="INFO"))

        def fake_build_scheduler(app_config, services, shutdown_event=None):
            scheduler = MagicMock()
            # Returning from start() immediately releases the main wait
            scheduler.start.side_effect = shutdown_event.set
            return scheduler

        mock_build_scheduler.side_effect = fake_build_scheduler

        exit_code = main([])

        assert exit_code == 0
        assert mock_signal.call_count == 2
        mock_close_db.assert_called_once()

    @patch("regnotify.main.load_runtime_config")
    def test_configuration_error(self, mock_load_config, capsys):
        mock_load_config.side_effect = ConfigurationError("Configuration file not found: nope.yaml")

        exit_code = main(["--config", "nope.yaml"])

        assert exit_code == 1
        assert "Configuration Error" in capsys.readouterr().err

    @patch("regnotify.main.init_database")
    @patch("regnotify.main.configure_logging")
    @patch("regnotify.main.load_runtime_config")
    def test_unexpected_error(self, mock_load_config, mock_configure_logging, mock_init_db, capsys):
        mock_load_config.return_value = (AppConfig(), EnvironmentConfig(log_level="INFO"))
        mock_init_db.side_effect = RuntimeError("disk full")

        exit_code = main(["--run", "alerts"])

        assert exit_code == 1
        assert "Fatal error: disk full" in capsys.readouterr().err

    @patch("regnotify.main.init_database")
    @patch("regnotify.main.load_runtime_config")
    def test_check_config_valid_file(self, mock_load_config, mock_init_db, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("alerts:\n  insurance_expiring_days: 10\n")

        exit_code = main(["--check-config", "--config", str(config_file)])

        assert exit_code == 0
        assert "is valid" in capsys.readouterr().out
        mock_load_config.assert_not_called()
        mock_init_db.assert_not_called()

    @patch("regnotify.main.load_runtime_config")
    def test_check_config_invalid_file(self, mock_load_config, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("queue:\n  batch_limit: 0\n")

        exit_code = main(["--check-config", "--config", str(config_file)])

        assert exit_code == 1
        assert "batch_limit" in capsys.readouterr().out
        mock_load_config.assert_not_called()

    def test_check_config_missing_file(self, tmp_path, capsys):
        assert main(["--check-config", "--config", str(tmp_path / "nope.yaml")]) == 1
        assert "validation failed" in capsys.readouterr().out

    @patch("regnotify.main.load_runtime_config")
    def test_keyboard_interrupt(self, mock_load_config):
        mock_load_config.side_effect = KeyboardInterrupt()

        assert main([]) == 0
