"""Entry point: ``python -m charging`` runs the queue scheduler until interrupted."""

import asyncio
import logging

from charging.runtime import LifecycleManager, build_dependencies
from infrastructure.logging_config import setup_logging
from infrastructure.settings import get_settings


def main() -> None:
    settings = get_settings()
    setup_logging(production_mode=settings.production_mode)

    logger = logging.getLogger('Main')
    logger.info("=" * 50)
    logger.info("Charging Queue Scheduler")
    logger.info("=" * 50)

    dependencies = build_dependencies(settings)
    lifecycle = LifecycleManager(dependencies)

    try:
        asyncio.run(lifecycle.run())
    except KeyboardInterrupt:
        logger.info("✅ Stopped by user (Ctrl+C)")
    except Exception as exc:
        logger.error("❌ Error: %s", exc, exc_info=True)
        raise


if __name__ == '__main__':
    main()
