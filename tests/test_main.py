"""Tests for main.py — command-line wiring, exit codes and result printing."""

from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import main
from fleetcp.config import ConfigManager
from fleetcp.errors import ConnectError, LocalPathError, RemoteExistsError
from fleetcp.transfer import TransferDirection, TransferOutcome, TransferReport


@pytest.fixture()
def config(tmp_path: Path) -> ConfigManager:
    return ConfigManager(base_dir=tmp_path / "cfg")


@pytest.fixture()
def orchestrator_cls():
    """Patch the orchestrator and pool so no host is ever contacted."""
    with patch("main.ConnectionPool") as pool_cls, patch("main.TransferOrchestrator") as cls:
        cls.pool_cls = pool_cls
        cls.return_value.run.return_value = TransferReport()
        yield cls


class TestRequestBuilding:
    def test_hosts_split_and_merged(self, config, orchestrator_cls) -> None:
        config.save_group("web", ["web3"])
        main.run(["put", "a.conf", "/etc/", "-H", "web1,web2", "-H", "db1", "-g", "web"], config=config)
        request = orchestrator_cls.return_value.run.call_args.args[0]
        assert request.hosts == ("web1", "web2", "db1", "web3")
        assert request.direction is TransferDirection.SEND
        assert request.local_path == "a.conf"
        assert request.remote_path == "/etc/"
        assert request.overwrite is False

    def test_get_maps_to_fetch(self, config, orchestrator_cls) -> None:
        main.run(["get", "out", "/var/log/syslog", "-H", "web1", "--overwrite"], config=config)
        request = orchestrator_cls.return_value.run.call_args.args[0]
        assert request.direction is TransferDirection.FETCH
        assert request.overwrite is True

    def test_config_defaults_and_overrides(self, config, orchestrator_cls) -> None:
        main.run(["get", "out", "/f", "-H", "h", "-P", "2200", "--max-size", "10", "--strict-host-keys"], config=config)
        pool_kwargs = orchestrator_cls.pool_cls.call_args.kwargs
        assert pool_kwargs["default_port"] == 2200
        assert pool_kwargs["timeout"] == 30
        assert pool_kwargs["insecure_host_key_accept"] is False
        assert orchestrator_cls.call_args.kwargs["max_transfer_size"] == 10

    def test_save_group(self, config, orchestrator_cls) -> None:
        main.run(["get", "out", "/f", "-H", "a,b", "--save-group", "pair"], config=config)
        assert config.get_group("pair") == ["a", "b"]

    def test_no_hosts_is_usage_error(self, config, orchestrator_cls) -> None:
        with pytest.raises(SystemExit) as info:
            main.run(["get", "out", "/f"], config=config)
        assert info.value.code == 2

    def test_unknown_group_is_fatal(self, config, orchestrator_cls) -> None:
        assert main.run(["get", "out", "/f", "-g", "ghost"], config=config) == main.EXIT_FATAL


class TestExitCodes:
    def test_all_hosts_ok(self, config, orchestrator_cls, capsys) -> None:
        orchestrator_cls.return_value.run.return_value = TransferReport(
            results={"10.0.0.1:22": TransferOutcome("/f", "out/f-10-0-0-1.", 5, 0.5)}
        )
        assert main.run(["get", "out", "/f", "-H", "h"], config=config) == main.EXIT_OK
        assert "10.0.0.1:22: /f => out/f-10-0-0-1. 5Byte 0.50 seconds" in capsys.readouterr().out

    def test_host_failure(self, config, orchestrator_cls) -> None:
        orchestrator_cls.return_value.run.return_value = TransferReport(
            failures={"10.0.0.1:22": RemoteExistsError("Remote file exists")}
        )
        assert main.run(["put", "a", "/b", "-H", "h"], config=config) == main.EXIT_HOST_FAILURE

    @pytest.mark.parametrize(
        "exc", [LocalPathError("Local path cannot be a file"), ConnectError("refused", host="h:22")]
    )
    def test_fatal_error(self, config, orchestrator_cls, capsys, exc) -> None:
        orchestrator_cls.return_value.run.side_effect = exc
        assert main.run(["get", "out", "/f", "-H", "h"], config=config) == main.EXIT_FATAL
        assert str(exc) in capsys.readouterr().err


class TestPrintReport:
    def test_sorted_by_address(self) -> None:
        report = TransferReport(results={
            "10.0.0.2:22": TransferOutcome("/f", "/l/2", 2, 0.0),
            "10.0.0.1:22": TransferOutcome("/f", "/l/1", 1, 0.0),
        })
        out = io.StringIO()
        main.print_report(report, stream=out)
        lines = out.getvalue().splitlines()
        assert [line.strip().split(":")[0] for line in lines] == ["10.0.0.1", "10.0.0.2"]

    def test_error_sink_prints_address_and_error(self, capsys) -> None:
        main._print_error("10.0.0.3:22", RemoteExistsError("Remote file exists"))
        assert capsys.readouterr().out == "10.0.0.3:22 Remote file exists\n"


class TestStorePassword:
    def test_prompts_and_stores(self, config, orchestrator_cls) -> None:
        with patch("main.getpass.getpass", return_value="pw"), patch("main.store_password") as store:
            main.run(["put", "a", "/b", "-H", "h", "-u", "ops", "--store-password"], config=config)
        store.assert_called_once_with("ops", "pw")
        auth = orchestrator_cls.pool_cls.call_args.args[0]
        assert auth.auth_type == "password"
        assert auth.username == "ops"


class TestPasswordPrompt:
    def test_password_prompted_when_keyring_empty(self, config, orchestrator_cls) -> None:
        main.run(["get", "out", "/f", "-H", "h", "-u", "ops", "--password"], config=config)
        auth = orchestrator_cls.pool_cls.call_args.args[0]
        with patch("fleetcp.auth.keyring.get_password", return_value=None), \
                patch("main.getpass.getpass", return_value="pw") as prompt:
            methods = auth.methods()
        prompt.assert_called_once_with("Password for ops: ")
        assert methods[0].value == "pw"

    def test_key_auth_never_prompts(self, config, orchestrator_cls) -> None:
        main.run(["get", "out", "/f", "-H", "h"], config=config)
        auth = orchestrator_cls.pool_cls.call_args.args[0]
        assert auth.auth_type == "key"
        assert auth._password_prompt is None


class TestManagement:
    def test_list_groups(self, config, orchestrator_cls, capsys) -> None:
        config.save_group("web", ["web1", "web2"])
        config.save_group("db", ["db1"])
        assert main.run(["--list-groups"], config=config) == main.EXIT_OK
        assert capsys.readouterr().out == "db: db1\nweb: web1, web2\n"
        orchestrator_cls.assert_not_called()

    def test_delete_group(self, config, orchestrator_cls) -> None:
        config.save_group("web", ["web1"])
        assert main.run(["--delete-group", "web"], config=config) == main.EXIT_OK
        assert config.get_group("web") is None

    def test_delete_unknown_group_is_fatal(self, config, orchestrator_cls, capsys) -> None:
        assert main.run(["--delete-group", "ghost"], config=config) == main.EXIT_FATAL
        assert "ghost" in capsys.readouterr().err

    def test_forget_password(self, config, orchestrator_cls) -> None:
        with patch("main.delete_password") as forget:
            assert main.run(["--forget-password", "-u", "ops"], config=config) == main.EXIT_OK
        forget.assert_called_once_with("ops")

    def test_management_then_transfer(self, config, orchestrator_cls) -> None:
        config.save_group("old", ["x"])
        main.run(["get", "out", "/f", "-H", "h", "--delete-group", "old"], config=config)
        assert config.get_group("old") is None
        orchestrator_cls.return_value.run.assert_called_once()

    def test_missing_positionals_is_usage_error(self, config, orchestrator_cls) -> None:
        with pytest.raises(SystemExit) as info:
            main.run(["-H", "h"], config=config)
        assert info.value.code == 2
