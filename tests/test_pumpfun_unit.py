import pytest

from src.domain.errors import ConfigurationError
from src.stream.payload import DEFAULT_IDENTIFIER_FIELDS
from src.stream.pumpfun import DEFAULT_SUBSCRIPTIONS, build_connect_options, build_listener, load_stream_config
from src.stream.state import SessionState


def test_default_subscriptions_only_dispatch_graduations():
    assert [(s.topic, s.sid) for s in DEFAULT_SUBSCRIPTIONS] == [
        ("coinImageUpdated.>", "1"),
        ("advancedCoinGraduated", "2"),
        ("advancedNewCoinCreated", "3"),
    ]
    assert [s.sid for s in DEFAULT_SUBSCRIPTIONS if s.dispatch] == ["2"]


def test_load_stream_config_defaults():
    cfg = load_stream_config({"stream": {"url": " wss://nats.example/ "}})
    assert cfg.url == "wss://nats.example/"
    assert cfg.verbose is True
    assert cfg.client_lang == "nats.ws"
    assert cfg.client_version == "1.29.2"
    assert cfg.reconnect_delay_seconds == 5.0
    assert cfg.keepalive_interval_seconds == 15.0
    assert cfg.subscriptions == DEFAULT_SUBSCRIPTIONS
    assert cfg.identifier_fields == DEFAULT_IDENTIFIER_FIELDS


def test_load_stream_config_custom_subscriptions():
    cfg = load_stream_config(
        {
            "stream": {
                "url": "wss://nats.example/",
                "subscriptions": [{"topic": "advancedNewCoinCreated", "sid": 7, "dispatch": True}],
            }
        }
    )
    (sub,) = cfg.subscriptions
    assert sub.topic == "advancedNewCoinCreated"
    assert sub.sid == "7"
    assert sub.dispatch is True


@pytest.mark.parametrize(
    "stream",
    [
        {},
        {"url": ""},
        {"url": "wss://x/", "subscriptions": "advancedCoinGraduated"},
        {"url": "wss://x/", "subscriptions": [{"sid": "1"}]},
    ],
)
def test_load_stream_config_rejects(stream):
    with pytest.raises(ConfigurationError):
        load_stream_config({"stream": stream})


def test_connect_options_include_credentials_only_when_user_set():
    anon = build_connect_options(load_stream_config({"stream": {"url": "wss://x/"}}))
    assert "user" not in anon and "pass" not in anon
    assert anon["protocol"] == 1
    assert anon["headers"] is True
    assert anon["no_responders"] is True
    assert anon["pedantic"] is False

    authed = build_connect_options(
        load_stream_config({"stream": {"url": "wss://x/", "user": "subscriber", "password": "pw", "verbose": False}})
    )
    assert authed["user"] == "subscriber"
    assert authed["pass"] == "pw"
    assert authed["verbose"] is False


def test_build_listener_wires_config_into_session():
    cfg = load_stream_config({"stream": {"url": "wss://x/", "reconnect_delay_seconds": 1}})

    async def never(url):
        raise AssertionError("not connecting in this test")

    listener = build_listener(cfg, connector=never)
    assert listener.name == "PumpFunListener"
    assert listener.reconnect_delay_seconds == 1.0
    assert listener.subscriptions == list(DEFAULT_SUBSCRIPTIONS)
    assert listener.state is SessionState.DISCONNECTED
    assert listener.connect_options == build_connect_options(cfg)
