"""Tests for main(): startup sequence, config wiring, and exit codes."""

import sys
from unittest.mock import MagicMock, patch

import pytest

from ollachat import agent
from ollachat.agent import build_parser
from ollachat.client import Fragment, ModelInfo, PullProgress
from ollachat.config import _UNSET
from ollachat.errors import ConfigError, ServerError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fake_client():
    """A MagicMock OllamaClient whose every call succeeds."""
    client = MagicMock()
    client.host = "http://127.0.0.1:11434"
    client.__exit__.return_value = False
    client.version.return_value = "0.12.3"
    client.list_models.return_value = [
        ModelInfo("gpt-oss:20b"),
        ModelInfo("nomic-embed-text:latest"),
    ]
    client.pull.return_value = iter(
        [PullProgress("pulling manifest"), PullProgress("success")]
    )
    client.embed.return_value = [0.1, 0.2, 0.3]
    client.capabilities.return_value = ["completion", "thinking"]
    client.chat_stream.return_value = iter(
        [Fragment(thinking="greeting"), Fragment(content="Hi"), Fragment(content=" there")]
    )
    client.generate_stream.return_value = iter([Fragment(content="generated")])
    return client


def _reader(*lines):
    pending = list(lines)

    def read_line():
        if not pending:
            raise EOFError
        return pending.pop(0)

    return read_line


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.setattr(agent.fmt, "init", lambda **kwargs: None)
    return tmp_path


def _main(monkeypatch, client, argv=(), lines=("hello", "exit")):
    monkeypatch.setattr(sys, "argv", ["ollachat", *argv])
    with (
        patch("ollachat.agent.OllamaClient", return_value=client) as ctor,
        patch("ollachat.agent.make_line_reader", return_value=_reader(*lines)),
    ):
        agent.main()
    return ctor


def _main_exit_code(monkeypatch, client, argv=(), lines=("hello", "exit")):
    with pytest.raises(SystemExit) as exc_info:
        _main(monkeypatch, client, argv, lines)
    return exc_info.value.code


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestHappyPath:
    def test_full_run(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        ctor = _main(monkeypatch, client)

        ctor.assert_called_once_with(None, timeout=30.0)
        client.heartbeat.assert_called_once_with(timeout=5.0)
        client.pull.assert_called_once_with("nomic-embed-text")
        client.embed.assert_called_once_with("nomic-embed-text", "Why is the sky blue?")
        client.capabilities.assert_called_once_with("gpt-oss:20b")
        client.chat_stream.assert_called_once_with(
            "gpt-oss:20b",
            [
                {"role": "system", "content": "You are a helpful assistant."},
                {"role": "user", "content": "hello"},
            ],
            think="low",
            timeout=30.0,
        )

        captured = capsys.readouterr()
        assert captured.out == "Hi there\n"
        assert "Connected successfully" in captured.err
        assert "Server Version: 0.12.3" in captured.err
        assert "★ 0: gpt-oss:20b" in captured.err
        assert "  - thinking" in captured.err
        assert "3 dimensions" in captured.err
        assert "Thought for" in captured.err
        assert "Goodbye" in captured.err

    def test_system_file_used(self, workdir, monkeypatch):
        (workdir / "system.txt").write_text("\n  Talk like a pirate.  \n", encoding="utf-8")
        client = _fake_client()
        _main(monkeypatch, client)
        messages = client.chat_stream.call_args.args[1]
        assert messages[0] == {"role": "system", "content": "Talk like a pirate."}

    def test_system_file_crlf_kept(self, workdir, monkeypatch):
        (workdir / "system.txt").write_bytes(b"line one\r\nline two\r\n")
        client = _fake_client()
        _main(monkeypatch, client)
        messages = client.chat_stream.call_args.args[1]
        assert messages[0]["content"] == "line one\r\nline two"

    def test_missing_system_file_warns(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        _main(monkeypatch, client)
        assert "could not load system message from system.txt" in capsys.readouterr().err
        messages = client.chat_stream.call_args.args[1]
        assert messages[0]["content"] == "You are a helpful assistant."

    def test_no_embed(self, workdir, monkeypatch):
        client = _fake_client()
        _main(monkeypatch, client, argv=["--no-embed"])
        client.pull.assert_not_called()
        client.embed.assert_not_called()

    def test_generate_mode(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        _main(monkeypatch, client, argv=["--mode", "generate", "--think", "off"])
        client.chat_stream.assert_not_called()
        client.generate_stream.assert_called_once_with(
            "gpt-oss:20b",
            "hello",
            system="You are a helpful assistant.",
            think=False,
            timeout=30.0,
        )
        assert capsys.readouterr().out == "generated\n"

    def test_quiet(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        _main(monkeypatch, client, argv=["-q"])
        captured = capsys.readouterr()
        assert captured.out == "Hi there\n"
        assert "Connecting" not in captured.err
        assert "Available Models" not in captured.err
        client.pull.assert_called_once()

    def test_project_config_applied(self, workdir, monkeypatch):
        (workdir / "ollachat.toml").write_text(
            'model = "llama3"\nchat_timeout = 12\n', encoding="utf-8"
        )
        client = _fake_client()
        ctor = _main(monkeypatch, client)
        ctor.assert_called_once_with(None, timeout=12)
        client.capabilities.assert_called_once_with("llama3")

    def test_cli_overrides_config(self, workdir, monkeypatch):
        (workdir / "ollachat.toml").write_text('model = "llama3"\n', encoding="utf-8")
        client = _fake_client()
        _main(monkeypatch, client, argv=["--model", "qwen3"])
        client.capabilities.assert_called_once_with("qwen3")

    def test_embed_failure_is_not_fatal(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        client.embed.side_effect = ServerError("embed", "model does not support embeddings")
        _main(monkeypatch, client)
        assert "embed failed" in capsys.readouterr().err
        client.chat_stream.assert_called_once()


# ---------------------------------------------------------------------------
# Fatal startup errors
# ---------------------------------------------------------------------------


class TestFatalErrors:
    def test_heartbeat_failure(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        client.heartbeat.side_effect = ServerError("heartbeat", "connection refused")
        assert _main_exit_code(monkeypatch, client) == 1
        client.version.assert_not_called()
        client.chat_stream.assert_not_called()
        err = capsys.readouterr().err
        assert "OLLAMA CONNECTION FAILED" in err
        assert "ollama serve" in err

    def test_client_construction_failure(self, workdir, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["ollachat", "--host", "ftp://nope"])
        with patch(
            "ollachat.agent.OllamaClient",
            side_effect=ConfigError("unsupported scheme in host 'ftp://nope'"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                agent.main()
        assert exc_info.value.code == 1
        assert "unsupported scheme" in capsys.readouterr().err

    @pytest.mark.parametrize(
        "method, operation",
        [("version", "version"), ("list_models", "list"), ("capabilities", "show")],
    )
    def test_setup_call_failure(self, workdir, monkeypatch, capsys, method, operation):
        client = _fake_client()
        getattr(client, method).side_effect = ServerError(operation, "HTTP 500")
        assert _main_exit_code(monkeypatch, client) == 1
        assert f"[ERROR] {operation} failed" in capsys.readouterr().err
        client.chat_stream.assert_not_called()

    def test_pull_failure(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        client.pull.side_effect = ServerError("pull", "file does not exist")
        assert _main_exit_code(monkeypatch, client) == 1
        client.embed.assert_not_called()
        client.chat_stream.assert_not_called()

    def test_bad_config(self, workdir, monkeypatch, capsys):
        (workdir / "ollachat.toml").write_text('mode = "complete"\n', encoding="utf-8")
        client = _fake_client()
        assert _main_exit_code(monkeypatch, client) == 1
        assert "must be one of" in capsys.readouterr().err
        client.heartbeat.assert_not_called()


# ---------------------------------------------------------------------------
# Informational flags and parser
# ---------------------------------------------------------------------------


class TestFlags:
    def test_version(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        assert _main_exit_code(monkeypatch, client, argv=["--version"]) == 0
        assert capsys.readouterr().out.strip()
        client.heartbeat.assert_not_called()

    def test_init_config(self, workdir, monkeypatch, capsys):
        client = _fake_client()
        assert _main_exit_code(monkeypatch, client, argv=["--init-config"]) == 0
        assert "# ollachat configuration file" in capsys.readouterr().out

    @pytest.mark.parametrize(
        "argv",
        [["--chat-timeout", "0"], ["--chat-timeout", "-5"], ["--connect-timeout", "0"]],
    )
    def test_non_positive_timeout_rejected(self, workdir, monkeypatch, capsys, argv):
        client = _fake_client()
        assert _main_exit_code(monkeypatch, client, argv=argv) == 2
        assert "must be positive" in capsys.readouterr().err
        client.heartbeat.assert_not_called()

    def test_debug_enables_logging(self, workdir, monkeypatch):
        with patch("ollachat.agent.logging.basicConfig") as basic:
            _main(monkeypatch, _fake_client(), argv=["--debug"])
        assert basic.call_args.kwargs["level"] == agent.logging.DEBUG

    def test_no_logging_without_debug(self, workdir, monkeypatch):
        with patch("ollachat.agent.logging.basicConfig") as basic:
            _main(monkeypatch, _fake_client())
        basic.assert_not_called()


class TestParser:
    def test_config_backed_options_default_unset(self):
        args = build_parser().parse_args([])
        for dest in ("host", "model", "mode", "think", "chat_timeout", "no_embed", "quiet"):
            assert getattr(args, dest) is _UNSET, dest

    def test_values_parsed(self):
        args = build_parser().parse_args(
            ["--chat-timeout", "45", "--on-failure", "rollback", "--no-embed"]
        )
        assert args.chat_timeout == 45.0
        assert args.on_failure == "rollback"
        assert args.no_embed is True

    def test_invalid_choice(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--think", "max"])
        assert exc_info.value.code == 2

    def test_color_flags_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--color", "--no-color"])
