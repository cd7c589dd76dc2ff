# utils/log.py
import os
import logging

FORMATTER = logging.Formatter('[%(asctime)s] %(levelname)s: %(message)s')


def get_logger(name):
    """
    Named logger with a console handler and, when CLAIM_LOG_FILE is set, a file handler.
    Handlers are attached once per name.
    """
    logger = logging.getLogger(name)
    if getattr(logger, "_claim_configured", False):
        return logger
    logger.setLevel(logging.INFO)

    # 控制台输出
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(FORMATTER)
    logger.addHandler(console_handler)

    # 文件输出
    log_file = os.getenv("CLAIM_LOG_FILE")
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(FORMATTER)
        logger.addHandler(file_handler)

    logger._claim_configured = True
    return logger
