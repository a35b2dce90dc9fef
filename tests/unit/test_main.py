"""
Unit tests for the command-line entry point.
"""

import json
import logging
import socket

import pytest

from echoserver.__main__ import build_parser, main


class TestParser:

    def test_defaults_are_unset(self):
        """Test unset flags stay None so lower-priority sources win."""
        args = build_parser().parse_args([])

        assert args.host is None
        assert args.port is None
        assert args.debug is None
        assert args.config is None

    def test_flags(self):
        args = build_parser().parse_args(["-H", "0.0.0.0", "-p", "7007", "--debug"])

        assert args.host == "0.0.0.0"
        assert args.port == 7007
        assert args.debug is True

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert "echo-server" in capsys.readouterr().out


class TestMain:

    def test_missing_configuration_exits_1(self, caplog):
        with caplog.at_level(logging.ERROR, logger="echoserver"):
            assert main([], environ={}) == 1

        assert "Missing required configuration" in caplog.text

    def test_bad_config_file_exits_1(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("not json")

        assert main(["--config", str(path)], environ={}) == 1

    def test_bind_failure_exits_1(self, caplog):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen(1)
            port = taken.getsockname()[1]

            with caplog.at_level(logging.ERROR, logger="echoserver"):
                code = main(["--host", "127.0.0.1", "--port", str(port)], environ={})

        assert code == 1
        assert f"127.0.0.1:{port}" in caplog.text

    def test_bind_failure_from_config_file(self, tmp_path):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen(1)
            port = taken.getsockname()[1]

            path = tmp_path / "config.json"
            path.write_text(json.dumps({"host": "127.0.0.1", "port": port}))

            assert main([], environ={"PATH_TO_CONFIG": str(path)}) == 1
