import logging

import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER = "asset_manager"


def setup_logging():
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

    # Avoid duplicate console handlers on re-import
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(ch)

    return logger


def get_logger(name=None):
    base = logging.getLogger(ROOT_LOGGER)
    return base.getChild(name) if name else base


logger = setup_logging()
