# -*- coding: utf-8 -*-

import secrets
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from settings import load_settings
from getGlobalLogger import logger

settings_data = load_settings()

# 工作区 API 的全部路由共用同一组账号
security = HTTPBasic(realm="workspace")
CORRECT_USERNAME = str(settings_data.get("API_USERNAME"))
CORRECT_PASSWORD = str(settings_data.get("API_PASSWORD"))

def verify_credentials(credentials: HTTPBasicCredentials = Depends(security)):
    """
    工作区路由的认证依赖, 账号来自 settings.yaml 的 API_USERNAME / API_PASSWORD。
    认证通过时返回用户名, 否则返回 401。
    """
    # 按 UTF-8 字节比较, 配置的账号可以包含非 ASCII 字符
    is_correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), CORRECT_USERNAME.encode("utf-8"))
    is_correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), CORRECT_PASSWORD.encode("utf-8"))

    if not (is_correct_username and is_correct_password):
        logger.warning(f"工作区 API 认证失败, 用户: '{credentials.username}'")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户名或密码不正确",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username
