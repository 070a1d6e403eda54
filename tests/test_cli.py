import pytest

from revoltbot import cli
from revoltbot import config as cfg
from revoltbot.relay_server import RelayServer


@pytest.fixture(autouse=True)
def _restore_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cfg, "_CONFIG_PATH", cfg._CONFIG_PATH)
    monkeypatch.setattr(cfg, "_CFG", cfg._CFG)
    monkeypatch.setattr(cfg, "_LOADED", cfg._LOADED)


def test_server_exits_1_without_api_key(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    assert cli.main(["server"]) == cli.EXIT_CONFIG
    assert "GEMINI_API_KEY" in capsys.readouterr().err


def test_missing_config_file_exits_1(tmp_path) -> None:
    assert cli.main(["server", "--config", str(tmp_path / "nope.yaml")]) == cli.EXIT_CONFIG


def test_invalid_config_exits_1(tmp_path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("server:\n  port: -5\n", encoding="utf-8")
    assert cli.main(["server", "--config", str(path)]) == cli.EXIT_CONFIG


def test_server_runs_with_configured_values(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    path = tmp_path / "server.yaml"
    path.write_text("server:\n  host: 127.0.0.1\n  port: 4321\n  path: /chat\n", encoding="utf-8")
    monkeypatch.setenv("GEMINI_API_KEY", "key")
    monkeypatch.delenv("PORT", raising=False)
    seen = {}

    def fake_serve_forever(self):
        seen.update(host=self.host, port=self.port, path=self.path,
                    model=self.provider.model, key=self.provider.api_key)

    monkeypatch.setattr(RelayServer, "serve_forever", fake_serve_forever)
    assert cli.main(["server", "--config", str(path)]) == cli.EXIT_OK
    assert seen == {"host": "127.0.0.1", "port": 4321, "path": "/chat",
                    "model": "gemini-1.5-flash-latest", "key": "key"}


def test_client_exits_2_when_speech_unsupported(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setattr(cli, "missing_capabilities", lambda text_mode=False: ["speech_recognition"])
    assert cli.main(["client"]) == cli.EXIT_UNSUPPORTED
    assert "speech_recognition" in capsys.readouterr().err


def test_missing_capabilities_text_mode_skips_recognizer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.importlib.util, "find_spec", lambda name: None)
    assert "speech_recognition" in cli.missing_capabilities(text_mode=False)
    assert "speech_recognition" not in cli.missing_capabilities(text_mode=True)


def test_parser_options() -> None:
    args = cli.build_parser().parse_args(["client", "--text", "--language", "hi-IN", "--debug"])
    assert args.command == "client"
    assert args.text is True
    assert args.language == "hi-IN"
    assert args.debug is True
