from unittest.mock import patch

import pytest

from llm_service.main import build_parser, main, resolve_config


def test_cli_flags_override_env_and_yaml(tmp_path, monkeypatch):
    path = tmp_path / "service.yaml"
    path.write_text("port: 8080\nmodels_dir: /from/yaml\nhost: 10.0.0.1\n")
    monkeypatch.setenv("LLM_SERVICE_PORT", "9090")
    monkeypatch.setenv("LLM_SERVICE_MODELS_DIR", "/from/env")

    args = build_parser().parse_args(["--config", str(path), "--models-dir", "/from/cli"])
    cfg = resolve_config(args)

    assert cfg.host == "10.0.0.1"
    assert cfg.port == 9090
    assert cfg.models_dir == "/from/cli"


def test_log_level_is_normalised():
    args = build_parser().parse_args(["--log-level", "debug"])

    assert args.log_level == "DEBUG"


def test_main_runs_uvicorn(tmp_path, monkeypatch):
    monkeypatch.delenv("LLM_SERVICE_PORT", raising=False)

    with patch("llm_service.main.uvicorn.run") as run:
        main(["--port", "4321", "--models-dir", str(tmp_path)])

    run.assert_called_once()
    assert run.call_args.kwargs["port"] == 4321
    assert run.call_args.kwargs["host"] == "0.0.0.0"
    app = run.call_args.args[0]
    assert app.state.config.models_dir == str(tmp_path)


def test_main_exits_on_bad_config(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(tmp_path / "missing.yaml")])

    assert exc_info.value.code == 1
