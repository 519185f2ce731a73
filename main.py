"""Run the pump.fun graduation listener.

Operator secrets (`PUMPFUN_NATS_PASS`, private RPC URLs in `SOLANA_RPC_ENDPOINTS`) live in
`config/secrets.env`, or in the file named by `PUMPFUN_ENV_FILE`. They are loaded into the
environment before `src.trader.runner` reads the YAML config and applies env overrides.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parent


def _secrets_file() -> Path:
    override = (os.environ.get("PUMPFUN_ENV_FILE") or "").strip()
    return Path(override) if override else ROOT / "config" / "secrets.env"


def main() -> None:
    env_path = _secrets_file()
    if env_path.is_file():
        # Variables already exported in the shell win over the file.
        load_dotenv(env_path, override=False)

    from src.trader.runner import main as run_bot

    run_bot()


if __name__ == "__main__":
    main()
