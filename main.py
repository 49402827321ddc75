import uvicorn
from fastapi import FastAPI

from settings import load_settings
from workspace_router import router as workspace_router

# 读取配置文件
settings_data = load_settings()

app = FastAPI(
    title="Project Workspace FileTree",
    description="多人项目工作区的文件/文件夹树: 批量创建目录结构, 从扁平记录重建目录树",
    version="1.0.0",
)

app.include_router(workspace_router)

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings_data.get("API_HOST"),
        port=settings_data.get("API_PORT"),
        # debug 参数
        # log_level="info",
        # access_log=True
        # 发布参数
        log_level="warning",
        access_log=False
    )
