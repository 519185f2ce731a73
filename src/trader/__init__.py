"""
Bot orchestration package.

The entrypoint remains `main.py` at the repo root. The wiring of the listener, the RPC
executor and the token consumer lives under `src/trader/` to keep entrypoints thin.
"""
