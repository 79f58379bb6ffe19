# src/humanmine/api/__main__.py
from __future__ import annotations

import uvicorn

from humanmine.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so HUMANMINE_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from humanmine.api.app import create_app
    from humanmine.runtime.executor_boot import build_executor
    from humanmine.runtime.runtime_config import load_runtime_config
    from humanmine.util.structured_log import configure_structured_logging

    cfg = load_runtime_config()
    configure_structured_logging(cfg.log_level)

    app = create_app(executor=build_executor(cfg))
    uvicorn.run(app, host=cfg.api_host, port=int(cfg.api_port), log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
