import pytest
from loguru import logger

from fund_sweeper import cli
from fund_sweeper import identity as identity_module
from fund_sweeper.cli import _overrides, main, parse_args
from fund_sweeper.errors import TerminalSweepError
from fund_sweeper.sweep_config import load_config

from tests.conftest import EVM_DESTINATION, FakeLedger


MNEMONIC = ("abandon abandon abandon abandon abandon abandon "
            "abandon abandon abandon abandon abandon about")


def test_parse_args_to_overrides():
    args = parse_args(["--policy", "withdraw_only", "--log-level", "debug", "--destination", "oasis1abc"])
    overrides = _overrides(args)

    assert overrides["policy"] == "withdraw_only"
    assert overrides["destination"] == "oasis1abc"
    assert overrides["network"] is None
    assert overrides["logging"] == {"level": "DEBUG"}


def test_bad_config_exits_with_usage_code(tmp_path):
    path = tmp_path / "sweep_config.yaml"
    path.write_text("policy: sweep_everything\n")

    assert main(["--config", str(path)]) == 2


def test_bad_destination_exits_before_loop(tmp_path):
    assert main([
        "--config", str(tmp_path / "missing.yaml"),
        "--policy", "deposit_only",
        "--destination", "oasis1qrd3mnzhhgst26hsp96uf45yhq6zlax0cuzdgcfc",
    ]) == 2


class UnreachableChainLedger(FakeLedger):
    async def chain_context(self):
        raise TerminalSweepError("chain context unavailable")


@pytest.mark.asyncio
async def test_generated_mnemonic_never_reaches_log_file(tmp_path, monkeypatch, capsys):
    log_file = tmp_path / "sweeper.log"
    monkeypatch.setattr(identity_module, "generate_mnemonic", lambda: MNEMONIC)
    monkeypatch.setattr(cli, "OasisNodeClient", lambda *args, **kwargs: UnreachableChainLedger())

    config = load_config(None, overrides={
        'policy': 'deposit_only',
        'identity': 'generate',
        'logging': {'level': 'DEBUG', 'file': str(log_file)},
    })
    cli.setup_logging(config.log_level, config.log_file)
    try:
        assert await cli.run_sweeper(config, EVM_DESTINATION) == 1
    finally:
        logger.remove()

    log_text = log_file.read_text(encoding="utf-8")
    assert "Controlled account" in log_text
    assert MNEMONIC not in log_text
    assert MNEMONIC in capsys.readouterr().err
