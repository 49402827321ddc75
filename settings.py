import os
import yaml

# 默认配置, settings.yaml 中的同名键会覆盖这里的值
DEFAULT_SETTINGS = {
    "DATABASE_PATH": "./assets/WORKSPACE.db",
    "API_HOST": "127.0.0.1",
    "API_PORT": 8000,
    "API_USERNAME": "admin",
    "API_PASSWORD": "admin",
    "LOG_LEVEL": "INFO",
    "LOG_FILE": "",
}


def load_settings(path=None):
    """
    读取配置文件并与默认配置合并。

    Args:
        path (str): 配置文件路径, 为空时依次使用环境变量 WORKSPACE_SETTINGS 和 ./settings.yaml
    """
    path = path or os.environ.get("WORKSPACE_SETTINGS", "settings.yaml")
    settings_data = dict(DEFAULT_SETTINGS)
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            settings_data.update(yaml.safe_load(f.read()) or {})
    return settings_data
