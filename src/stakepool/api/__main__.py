# src/stakepool/api/__main__.py
from __future__ import annotations

import uvicorn

from stakepool.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so STAKEPOOL_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from stakepool.api.app import create_app
    from stakepool.api.structured_logging import configure_structured_logging
    from stakepool.runtime.pool_config import apply_pool_settings_to_env, load_pool_settings

    settings = load_pool_settings()
    apply_pool_settings_to_env(settings)
    configure_structured_logging(settings.log_level)

    uvicorn.run(
        create_app(settings=settings),
        host=settings.api_host,
        port=int(settings.api_port),
        log_level=settings.log_level.strip().lower(),
    )


if __name__ == "__main__":
    main()
