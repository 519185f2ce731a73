import asyncio
import logging

from src.trader.runner import configure_logging, make_token_handler


class FakeSolana:
    def __init__(self, supply):
        self.supply = supply
        self.calls = []

    async def get_token_supply(self, mint):
        self.calls.append(mint)
        return self.supply


def test_token_handler_looks_up_supply(caplog):
    solana = FakeSolana(1_000_000_000.0)
    handler = make_token_handler(solana)
    with caplog.at_level(logging.INFO, logger="src.trader.runner"):
        asyncio.run(handler("Mint111", {"name": "Dog"}))
    assert solana.calls == ["Mint111"]
    assert "Dog" in caplog.text


def test_token_handler_skips_when_supply_unavailable(caplog):
    handler = make_token_handler(FakeSolana(None))
    with caplog.at_level(logging.WARNING, logger="src.trader.runner"):
        asyncio.run(handler("Mint111", "not a dict"))
    assert "supply unavailable" in caplog.text


def test_configure_logging_applies_level_and_quiets_libraries():
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging({"logging": {"level": "debug"}})
        assert root.level == logging.DEBUG
        assert logging.getLogger("websockets").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.setLevel(previous)
