import pytest

from src.domain.errors import ConfigurationError
from src.utils.config_loader import default_config_path, load_config, validate_config

ENV_VARS = [
    "SOLANA_RPC_ENDPOINTS",
    "RPC_RETRY_ATTEMPTS",
    "RPC_RETRY_DELAY_MS",
    "RPC_TIMEOUT_SECONDS",
    "PUMPFUN_WEBSOCKET_URL",
    "PUMPFUN_NATS_USER",
    "PUMPFUN_NATS_PASS",
    "PUMPFUN_RECONNECT_DELAY_SECONDS",
    "PUMPFUN_LOG_LEVEL",
]

MINIMAL_YAML = """
rpc:
  endpoints: [https://rpc-a.example]
stream:
  url: wss://nats.example/
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_repo_config_is_valid():
    cfg = load_config(default_config_path(), force_reload=True)
    assert cfg["rpc"]["endpoints"]
    assert cfg["stream"]["url"].startswith("wss://")


def test_env_overrides_take_precedence(tmp_path, monkeypatch):
    path = _write(tmp_path, MINIMAL_YAML)
    monkeypatch.setenv("SOLANA_RPC_ENDPOINTS", " https://a.example , ,https://b.example")
    monkeypatch.setenv("RPC_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("RPC_RETRY_DELAY_MS", "250")
    monkeypatch.setenv("PUMPFUN_WEBSOCKET_URL", "wss://other.example/")
    monkeypatch.setenv("PUMPFUN_NATS_PASS", "s3cret")
    monkeypatch.setenv("PUMPFUN_LOG_LEVEL", "debug")

    cfg = load_config(path, force_reload=True)
    assert cfg["rpc"]["endpoints"] == ["https://a.example", "https://b.example"]
    assert cfg["rpc"]["retry_attempts"] == 5
    assert cfg["rpc"]["retry_delay_ms"] == 250
    assert cfg["stream"]["url"] == "wss://other.example/"
    assert cfg["stream"]["password"] == "s3cret"
    assert cfg["logging"]["level"] == "DEBUG"


def test_load_config_returns_independent_copies(tmp_path):
    path = _write(tmp_path, MINIMAL_YAML)
    first = load_config(path, force_reload=True)
    first["rpc"]["endpoints"].append("https://mutated.example")
    second = load_config(path)
    assert second["rpc"]["endpoints"] == ["https://rpc-a.example"]


def test_missing_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "nope.yaml", force_reload=True)


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = _write(tmp_path, "- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        load_config(path, force_reload=True)


@pytest.mark.parametrize(
    "cfg",
    [
        {"stream": {"url": "wss://x/"}},
        {"rpc": {"endpoints": ["https://a"]}},
        {"rpc": {"endpoints": []}, "stream": {"url": "wss://x/"}},
        {"rpc": {"endpoints": " , "}, "stream": {"url": "wss://x/"}},
        {"rpc": {"endpoints": ["https://a"], "retry_attempts": 0}, "stream": {"url": "wss://x/"}},
        {"rpc": {"endpoints": ["https://a"], "retry_delay_ms": -1}, "stream": {"url": "wss://x/"}},
        {"rpc": {"endpoints": ["https://a"]}, "stream": {"url": "  "}},
    ],
)
def test_validate_config_rejects(cfg):
    with pytest.raises(ConfigurationError):
        validate_config(cfg)


def test_validate_config_accepts_comma_separated_endpoints():
    validate_config({"rpc": {"endpoints": "https://a,https://b"}, "stream": {"url": "wss://x/"}})


def test_cached_config_is_reused_until_forced(tmp_path):
    path = _write(tmp_path, MINIMAL_YAML)
    load_config(path, force_reload=True)
    path.write_text(MINIMAL_YAML.replace("rpc-a", "rpc-b"), encoding="utf-8")

    assert load_config(path)["rpc"]["endpoints"] == ["https://rpc-a.example"]
    assert load_config(path, force_reload=True)["rpc"]["endpoints"] == ["https://rpc-b.example"]
