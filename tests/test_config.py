import io
import logging
import unittest
from contextlib import redirect_stderr
from dataclasses import FrozenInstanceError
import sys
import os

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from heroku_proxy.config import ServerConfig, resolve_env_port
from heroku_proxy.errors import ConfigurationWarning
from heroku_proxy.log import TRACE, configure_logging


class TestServerConfig(unittest.TestCase):
    """Test cases for command-line and environment configuration."""

    def test_defaults(self):
        # Act
        config = ServerConfig.from_args([], environ={})

        # Assert
        self.assertEqual(config.port, 8000)
        self.assertEqual(config.host, "")
        self.assertEqual(config.log_level, "info")
        self.assertEqual(config.shutdown_timeout, 5.0)

    def test_port_from_environment(self):
        config = ServerConfig.from_args([], environ={"PORT": "9000"})
        self.assertEqual(config.port, 9000)

    def test_flag_overrides_environment(self):
        config = ServerConfig.from_args(["--port", "7000"], environ={"PORT": "9000"})
        self.assertEqual(config.port, 7000)

    def test_invalid_environment_port_falls_back(self):
        """An unusable PORT is reported on stderr and the default is kept."""
        for value in ("abc", "-5", "0"):
            with self.subTest(value=value):
                # Arrange
                stderr = io.StringIO()

                # Act
                config = ServerConfig.from_args([], environ={"PORT": value},
                                                stderr=stderr)

                # Assert
                self.assertEqual(config.port, 8000)
                self.assertIn(f"invalid port {value!r}, override as 8000",
                              stderr.getvalue())

    def test_resolve_env_port(self):
        self.assertEqual(resolve_env_port({}, 8000), 8000)
        self.assertEqual(resolve_env_port({"PORT": ""}, 8000), 8000)
        self.assertEqual(resolve_env_port({"PORT": "8123"}, 8000), 8123)
        with self.assertRaises(ConfigurationWarning):
            resolve_env_port({"PORT": "eighty"}, 8000)

    def test_log_level_choices(self):
        for level in ("warn", "info", "debug", "trace"):
            with self.subTest(level=level):
                config = ServerConfig.from_args(["-l", level], environ={})
                self.assertEqual(config.log_level, level)

    def test_unknown_log_level_rejected(self):
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit):
            ServerConfig.from_args(["--log", "loud"], environ={})

    def test_negative_shutdown_timeout_rejected(self):
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit):
            ServerConfig.from_args(["--shutdown-timeout", "-1"], environ={})

    def test_config_is_immutable(self):
        config = ServerConfig()
        with self.assertRaises(FrozenInstanceError):
            config.port = 1


class TestConfigureLogging(unittest.TestCase):

    def test_trace_level(self):
        logger = configure_logging("trace")
        self.assertEqual(logger.level, TRACE)
        self.assertEqual(logging.getLevelName(TRACE), "TRACE")

    def test_warn_level(self):
        logger = configure_logging("warn")
        self.assertEqual(logger.level, logging.WARNING)

    def test_unknown_level(self):
        with self.assertRaises(ValueError):
            configure_logging("loud")

    def tearDown(self):
        logging.getLogger("heroku_proxy").setLevel(logging.NOTSET)


if __name__ == '__main__':
    unittest.main()
