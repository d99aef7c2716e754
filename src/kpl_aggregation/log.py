from __future__ import annotations

import logging

from kpl_aggregation.settings import Settings


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.log_level_number,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
