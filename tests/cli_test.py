"""Tests for the command-line interface."""

from __future__ import annotations

from click.testing import CliRunner

from scalebit.cli import main

from .support.config import config_path


def test_help() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["help"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "reconcile" in result.output

    result = runner.invoke(main, ["help", "collect"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "orphaned" in result.output

    result = runner.invoke(main, ["help", "unknown"])
    assert result.exit_code != 0


def test_reconcile() -> None:
    runner = CliRunner()
    config_file = str(config_path("standard"))
    result = runner.invoke(
        main,
        ["reconcile", "shop", "orders", "--config-file", config_file],
        catch_exceptions=False,
    )
    assert result.exit_code == 0
    assert "shop/orders already converged" in result.output


def test_collect() -> None:
    runner = CliRunner()
    config_file = str(config_path("standard"))
    result = runner.invoke(
        main, ["collect", "-c", config_file], catch_exceptions=False
    )
    assert result.exit_code == 0
    assert "Deleted 0 orphaned resources" in result.output


def test_bad_config() -> None:
    runner = CliRunner()
    config_file = str(config_path("bad-backoff"))
    result = runner.invoke(main, ["collect", "-c", config_file])
    assert result.exit_code != 0
