"""Tests for the command line entry point."""
from __future__ import annotations

import json
import logging
from unittest.mock import patch
import pytest

from status_tap.collector import CollectorSpec
from status_tap.logging_utils import TRACE_LEVEL, resolve_log_level
from status_tap.main import build_parser, main
from status_tap.readings import Text


@pytest.fixture
def clock_only():
    specs = [CollectorSpec(metric="clock", interval_s=1.0, sample=lambda: Text("09:30"))]
    with patch("status_tap.main.build_collector_specs", return_value=specs):
        yield


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args([])

        assert args.config is None
        assert args.tick is None
        assert not args.once
        assert args.verbose == 0

    def test_options(self):
        args = build_parser().parse_args(["--once", "--tick", "0.5", "-vv"])

        assert args.once
        assert args.tick == 0.5
        assert args.verbose == 2


class TestMain:
    """Tests for main()."""

    def test_once_writes_one_snapshot(self, clock_only, capsys):
        assert main(["--once"]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 1
        message = json.loads(lines[0])
        assert message["type"] == "snapshot"
        assert message["metrics"]["clock"]["value"] == {"kind": "text", "text": "09:30"}

    def test_missing_config_exits_with_error(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "absent.cfg")]) == 1
        assert capsys.readouterr().out == ""

    def test_invalid_tick(self, clock_only, capsys):
        assert main(["--tick", "0"]) == 1
        assert capsys.readouterr().out == ""

    def test_no_collectors_enabled(self, capsys):
        with patch("status_tap.main.build_collector_specs", return_value=[]):
            assert main(["--once"]) == 1


class TestLogLevel:
    """Tests for resolve_log_level."""

    @pytest.mark.parametrize(
        "verbosity,fallback,expected",
        [
            (0, "warning", logging.WARNING),
            (0, "bogus", logging.INFO),
            (1, "ERROR", logging.DEBUG),
            (2, "ERROR", TRACE_LEVEL),
        ],
    )
    def test_resolve(self, verbosity, fallback, expected):
        assert resolve_log_level(verbosity, fallback) == expected
