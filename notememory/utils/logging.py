import logging

ROOT_LOGGER = "note-memory"


def setup_logging(level: str | int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return logger
    logger.setLevel(level)
    h = logging.StreamHandler()
    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    h.setFormatter(fmt)
    logger.addHandler(h)
    return logger


def get_logger(name: str) -> logging.Logger:
    # children propagate to the handler installed by setup_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
