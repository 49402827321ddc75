from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from errors import ValidationError
from utils import makeFullPath

# 树节点类型: 文件
TYPE_FILE = "file"
# 树节点类型: 目录
TYPE_DIRECTORY = "folder"

# fileType 的可选值 (用于评测题目的输入/输出文件配对)
FILE_TYPES = ("main", "input", "output", "other")
DEFAULT_FILE_TYPE = "other"


@dataclass
class JudgeTestcase:
    # 输入文件ID
    input: str
    # 输出文件ID, 可以为空
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"input": self.input, "output": self.output}


@dataclass
class FileRecord:
    """
    数据类，表示数据库中的一条文件/文件夹记录。
    记录之间通过 parent_folder (子 -> 父) 和 children (父 -> 子) 互相引用，
    path 保存的是祖先路径，不包含自身的 name。
    """
    # 记录的唯一ID
    id: str
    # 文件或目录名
    name: str
    # 祖先路径 (POSIX 风格, 以 / 分隔)
    path: str
    # 是否为文件夹
    is_folder: bool
    # 所属用户ID
    author_id: str
    # 所属项目ID
    project_id: str
    # 父文件夹ID, 根节点为 None
    parent_folder: Optional[str] = None
    # 文件内容 (文件夹为 None)
    content: Optional[bytes] = None
    # 语言标签 (文件夹为 None)
    language: Optional[str] = None
    # main / input / output / other
    file_type: str = DEFAULT_FILE_TYPE
    # 子节点ID列表, 仅文件夹使用
    children: List[str] = field(default_factory=list)
    # 评测用例 (输入/输出文件配对)
    testcases: List[JudgeTestcase] = field(default_factory=list)
    # 创建和更新时间 (UTC, ISO 8601)
    created_at: str = ""
    updated_at: str = ""

    @property
    def full_path(self) -> str:
        return makeFullPath(self.path, self.name)

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "fullPath": self.full_path,
            "isFolder": self.is_folder,
            "parentFolder": self.parent_folder,
            "authorId": self.author_id,
            "projectId": self.project_id,
            "fileType": self.file_type,
            "language": self.language,
            "children": list(self.children),
            "testcases": [testcase.to_dict() for testcase in self.testcases],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if include_content and not self.is_folder:
            # 能按 UTF-8 解码的内容以文本返回, 否则返回 None
            try:
                data["content"] = (self.content or b"").decode("utf-8")
            except UnicodeDecodeError:
                data["content"] = None
        return data


@dataclass
class User:
    id: str
    user_name: str
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "userName": self.user_name, "createdAt": self.created_at}


@dataclass
class Project:
    id: str
    project_name: str
    owner_id: str
    # 项目根目录的记录ID
    root_folder: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "projectName": self.project_name,
            "ownerId": self.owner_id,
            "rootFolder": self.root_folder,
            "createdAt": self.created_at,
        }


@dataclass
class FileEntry:
    """目录结构描述中的一个文件条目。"""
    name: str
    path: str
    language: Optional[str] = None
    content: Union[bytes, str] = b""
    file_type: str = DEFAULT_FILE_TYPE

    is_folder = False

    def to_attributes(self, parent_id, author_id, project_id) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "isFolder": False,
            "content": self.content,
            "language": self.language,
            "parentFolder": parent_id,
            "authorId": author_id,
            "projectId": project_id,
            "fileType": self.file_type,
        }


@dataclass
class FolderEntry:
    """目录结构描述中的一个文件夹条目, files 为嵌套的子条目。"""
    name: str
    path: str
    file_type: str = DEFAULT_FILE_TYPE
    files: List[Any] = field(default_factory=list)

    is_folder = True

    def to_attributes(self, parent_id, author_id, project_id) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "isFolder": True,
            "parentFolder": parent_id,
            "authorId": author_id,
            "projectId": project_id,
            "fileType": self.file_type,
        }


Entry = Union[FileEntry, FolderEntry]


def coerce_entry(item: Any) -> Entry:
    """
    把一个结构描述条目 (dict 或 Entry) 转换为 FileEntry / FolderEntry。
    这里只做形状转换，字段是否合法由数据库层在写入时校验。
    """
    if isinstance(item, (FileEntry, FolderEntry)):
        return item
    if not isinstance(item, Mapping):
        raise ValidationError(f"无效的结构条目: {item!r}")

    file_type = item.get("fileType") or DEFAULT_FILE_TYPE
    if item.get("isFolder"):
        files = item.get("files") or []
        if not isinstance(files, (list, tuple)):
            raise ValidationError(f"文件夹 {item.get('name')!r} 的 files 必须是列表")
        return FolderEntry(
            name=item.get("name"),
            path=item.get("path"),
            file_type=file_type,
            files=list(files),
        )

    content = item.get("content")
    return FileEntry(
        name=item.get("name"),
        path=item.get("path"),
        language=item.get("language"),
        # 未提供内容时使用空字节串
        content=content if content else b"",
        file_type=file_type,
    )


@dataclass
class TreeNode:
    """重建后的目录树节点 (用于前端展示)。"""
    id: str
    name: str
    type: str
    # 从项目根开始的相对路径, 合成根节点没有 path
    path: Optional[str] = None
    language: Optional[str] = None
    file_type: Optional[str] = None
    children: List['TreeNode'] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.type == TYPE_DIRECTORY

    def find_child(self, name: str) -> Optional['TreeNode']:
        for child in self.children:
            if child.name == name:
                return child
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "name": self.name, "type": self.type}
        if self.path is not None:
            data["path"] = self.path
        if self.type == TYPE_FILE:
            data["language"] = self.language
            data["fileType"] = self.file_type
        else:
            data["children"] = [child.to_dict() for child in self.children]
        return data
