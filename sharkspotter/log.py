import logging
from typing import Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def init_logger(level: Union[str, int] = "INFO") -> logging.Logger:
    """给 root logger 安装唯一的 StreamHandler（各模块使用各自命名的 logger），重复调用只会更新级别。"""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger()
    logger.setLevel(level)
    for h in logger.handlers:
        if getattr(h, "_sharkspotter", False):
            h.setLevel(level)
            return logger

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    ch._sharkspotter = True
    logger.addHandler(ch)
    return logger
