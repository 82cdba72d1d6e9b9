import logging
import os

# ------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------
def setup_enhanced_logging(log_file=None):
    logger = logging.getLogger('tgstate')
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
        if log_file is None:
            log_file = os.getenv("LOG_FILE", "tgstate.log")
        if log_file:
            try:
                file_handler = logging.FileHandler(log_file)
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
            except OSError as e:
                logger.warning(f"File logging disabled ({log_file}): {e}")
    return logger

logger = setup_enhanced_logging()
