import pytest

from stride_analyzer.clients.llm_factory import build_llm_client
from stride_analyzer.clients.openai_client import OpenAIClient
from stride_analyzer.models.model_config import ClientConfig, PipelineConfig
from stride_analyzer.utils.config import load_settings


def test_load_settings_reads_yaml_and_env(tmp_path, monkeypatch) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(
        "llm:\n  model_segment: small\n  max_retries: 2\npipeline:\n  batch_size: 4\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("ARTIFACTS_DIR", str(tmp_path / "out"))
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)

    settings = load_settings(path)
    client_config = ClientConfig.from_settings(settings)
    pipeline_config = PipelineConfig.from_settings(settings)

    assert client_config.api_key == "sk-env"
    assert client_config.segment_model == "small"
    assert client_config.reduce_model == "gpt-4o"
    assert client_config.max_retries == 2
    assert pipeline_config.batch_size == 4
    assert pipeline_config.chunk_size == 4000
    assert pipeline_config.artifacts_dir == str(tmp_path / "out")


def test_settings_key_wins_over_env(tmp_path, monkeypatch) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("llm:\n  api_key: sk-file\n", encoding="utf-8")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert load_settings(path)["llm"]["api_key"] == "sk-file"


def test_missing_settings_file_gives_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ARTIFACTS_DIR", raising=False)
    settings = load_settings(tmp_path / "absent.yaml")
    assert PipelineConfig.from_settings(settings) == PipelineConfig()


@pytest.mark.parametrize(
    "pipeline",
    [
        {"batch_size": 0},
        {"batch_size": 1},
        {"chunk_size": 100, "chunk_overlap": 100},
        {"min_delay_sec": 3.0, "max_delay_sec": 1.0},
    ],
)
def test_invalid_pipeline_settings_rejected(pipeline) -> None:
    with pytest.raises(ValueError):
        PipelineConfig.from_settings({"pipeline": pipeline})


def test_build_llm_client(monkeypatch) -> None:
    assert build_llm_client({"llm": {"enabled": False}}) is None
    with pytest.raises(ValueError):
        build_llm_client({"llm": {}})
    client = build_llm_client({"llm": {"api_key": "sk-test", "model_reduce": "big"}})
    assert isinstance(client, OpenAIClient)
    assert client.config.reduce_model == "big"
    client.close()
