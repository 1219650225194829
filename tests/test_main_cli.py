from pathlib import Path

from main import _parse_args, main


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "0.0.0.0", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "0.0.0.0"
    assert args.port == 8080


def test_global_config_option_precedes_implicit_serve() -> None:
    args = _parse_args(["--config", "custom.yaml", "--port", "9000"])
    assert args.command == "serve"
    assert args.config == "custom.yaml"
    assert args.port == 9000


def test_reset_admin_subcommand() -> None:
    args = _parse_args(["reset-admin", "--email", "boss@example.com", "--yes"])
    assert args.command == "reset-admin"
    assert args.email == "boss@example.com"
    assert args.yes is True
    assert args.phone == "0830000000"


def test_set_token_stores_credential(tmp_path: Path, monkeypatch, capsys) -> None:
    store_path = tmp_path / "clientdesk.sqlite3"
    monkeypatch.setenv("CLIENTDESK_STORE_PATH", str(store_path))
    monkeypatch.setenv("CLIENTDESK_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("CLIENTDESK_TOKEN", "abc123")

    assert main(["set-token"]) == 0
    assert "Token stored." in capsys.readouterr().out

    from clientdesk.local_store import AUTH_TOKEN_KEY, LocalStore

    assert LocalStore(store_path).get(AUTH_TOKEN_KEY) == "abc123"


def test_config_option_anywhere_before_implicit_serve() -> None:
    args = _parse_args(["--config=custom.yaml", "--port", "9000"])
    assert args.command == "serve"
    assert args.config == "custom.yaml"
    assert args.port == 9000

    args = _parse_args(["--port", "9000", "--config", "other.yaml"])
    assert args.command == "serve"
    assert args.config == "other.yaml"
    assert args.port == 9000
