from contextlib import contextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from auth import verify_credentials
from errors import NotFoundError, ValidationError
from file_system import ProjectFileSystem
from settings import load_settings
from WorkspaceDatabase import WorkspaceDatabase
from getGlobalLogger import logger

settings_data = load_settings()

# 所有接口都需要 HTTP Basic 认证
router = APIRouter(dependencies=[Depends(verify_credentials)])

_file_system: Optional[ProjectFileSystem] = None


def get_file_system() -> ProjectFileSystem:
    # 首次请求时再打开数据库, 测试中可以通过 dependency_overrides 替换
    global _file_system
    if _file_system is None:
        _file_system = ProjectFileSystem(WorkspaceDatabase(dbpath=settings_data.get("DATABASE_PATH")))
    return _file_system


class UserIn(BaseModel):
    userName: str


class ProjectIn(BaseModel):
    projectName: str
    ownerId: str


class StructureEntryIn(BaseModel):
    # 字段是否齐全交给数据库层校验, 这样部分失败时已创建的记录可以保留
    name: Optional[str] = None
    path: Optional[str] = None
    isFolder: bool = False
    fileType: Optional[str] = None
    content: Optional[str] = None
    language: Optional[str] = None
    files: Optional[List['StructureEntryIn']] = None


StructureEntryIn.model_rebuild()


class StructureIn(BaseModel):
    authorId: str
    parentId: Optional[str] = None
    atomic: bool = False
    files: List[StructureEntryIn]


@contextmanager
def _translate_errors():
    # 把领域错误转换为 HTTP 错误
    try:
        yield
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/users", status_code=status.HTTP_201_CREATED, tags=["Users"])
async def create_user(body: UserIn, fs: ProjectFileSystem = Depends(get_file_system)):
    with _translate_errors():
        return fs.create_user(body.userName).to_dict()


@router.post("/projects", status_code=status.HTTP_201_CREATED, tags=["Projects"])
async def create_project(body: ProjectIn, fs: ProjectFileSystem = Depends(get_file_system)):
    with _translate_errors():
        return fs.create_project(body.projectName, body.ownerId).to_dict()


@router.post("/projects/{project_id}/structure", status_code=status.HTTP_201_CREATED, tags=["Projects"])
async def create_structure(project_id: str, body: StructureIn, fs: ProjectFileSystem = Depends(get_file_system)):
    """批量创建嵌套的目录结构, 返回按创建顺序排列的记录。"""
    structure = [entry.model_dump(exclude_none=True) for entry in body.files]
    logger.info(f"收到目录结构创建请求: projectId={project_id}, 顶层条目数={len(structure)}, atomic={body.atomic}")
    with _translate_errors():
        created = fs.build_structure(
            structure, body.parentId, body.authorId, project_id, atomic=body.atomic, link_parent=True
        )
    return [record.to_dict() for record in created]


@router.get("/projects/{project_id}/tree", tags=["Projects"])
async def get_project_tree(project_id: str, fs: ProjectFileSystem = Depends(get_file_system)):
    with _translate_errors():
        return fs.build_project_tree(project_id).to_dict()


@router.get("/projects/{project_id}/search", tags=["Projects"])
async def search_project_files(
    project_id: str,
    q: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    fs: ProjectFileSystem = Depends(get_file_system),
):
    with _translate_errors():
        records, is_end_page = fs.search_files(project_id, q, page=page)
    return {"files": [record.to_dict() for record in records], "page": page, "isEndPage": is_end_page}


@router.get("/files/{file_id}", tags=["Files"])
async def get_file(file_id: str, fs: ProjectFileSystem = Depends(get_file_system)):
    with _translate_errors():
        return fs.get_file(file_id).to_dict(include_content=True)


@router.delete("/files/{file_id}", tags=["Files"])
async def delete_file(file_id: str, recursive: bool = True, fs: ProjectFileSystem = Depends(get_file_system)):
    with _translate_errors():
        return {"deleted": fs.delete_file(file_id, recursive=recursive)}
