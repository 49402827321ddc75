import logging
import os

from settings import load_settings

settings_data = load_settings()

# 全局日志格式
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(filename)s:%(lineno)d - %(message)s"


def getGlobalLogger(name="workspace"):
    _logger = logging.getLogger(name)
    # 避免重复 import 时重复添加 handler
    if _logger.handlers:
        return _logger

    _logger.setLevel(str(settings_data.get("LOG_LEVEL", "INFO")).upper())
    formatter = logging.Formatter(LOG_FORMAT)

    # 控制台输出
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    _logger.addHandler(console_handler)

    # 文件输出 (LOG_FILE 为空时不写文件)
    log_file = settings_data.get("LOG_FILE")
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        _logger.addHandler(file_handler)

    return _logger


logger = getGlobalLogger()
