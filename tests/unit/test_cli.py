"""Unit tests for the command-line interface."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from voice_orchestrator import __version__
from voice_orchestrator.cli import _split_words, cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("voice_orchestrator.cli.configure_logging"):
        yield


def test_split_words():
    assert _split_words("one two three four five", 2) == ["one two", " three four", " five"]


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_languages(runner):
    result = runner.invoke(cli, ["languages"])

    assert result.exit_code == 0
    assert "af-ZA" in result.output
    assert "nso-ZA" in result.output


def test_simulate_prints_reply(runner):
    result = runner.invoke(
        cli,
        ["simulate", "What is two plus two", "--reply", "Two plus two is four.", "--timeout", "5"],
    )

    assert result.exit_code == 0, result.output
    assert "Two plus two is four." in result.output
    assert "reply_completed" in result.output


def test_simulate_requires_reply(runner):
    result = runner.invoke(cli, ["simulate", "hello there"])

    assert result.exit_code == 1
    assert "--reply is required" in result.output
