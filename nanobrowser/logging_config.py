import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """配置 nanobrowser 命名空间的日志输出，级别默认读取 NANO_LOG_LEVEL"""
    level_name = (level or os.getenv('NANO_LOG_LEVEL', 'warning')).upper()
    log_level = getattr(logging, level_name, logging.WARNING)

    logger = logging.getLogger('nanobrowser')
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)-8s [%(name)s] %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = False

    # 第三方库过于啰嗦
    for name in ('httpx', 'httpcore', 'openai'):
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
