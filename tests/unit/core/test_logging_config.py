"""
Unit tests for loguru sink configuration.
"""

import sys

import pytest
from loguru import logger

from autotrader.core.config import LoggingSettings
from autotrader.core.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_default_sink():
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestConfigureLogging:
    """Test stderr and file sink setup."""

    def test_file_sink_written(self, tmp_path):
        log_dir = tmp_path / "logs"
        configure_logging(LoggingSettings(level="DEBUG", log_dir=str(log_dir)))

        logger.info("session pool ready")
        logger.complete()

        log_file = log_dir / "autotrader.log"
        assert log_file.exists()
        assert "session pool ready" in log_file.read_text()

    def test_level_filters_file_sink(self, tmp_path):
        configure_logging(LoggingSettings(level="WARNING", log_dir=str(tmp_path)))

        logger.info("hidden detail")
        logger.warning("visible warning")
        logger.complete()

        content = (tmp_path / "autotrader.log").read_text()
        assert "visible warning" in content
        assert "hidden detail" not in content

    def test_no_file_sink_without_log_dir(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        configure_logging(LoggingSettings(log_dir=None))
        logger.info("stderr only")

        assert list(tmp_path.iterdir()) == []
