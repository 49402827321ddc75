"""
测试用的公共 fixtures:
1. 把仓库根目录加入 sys.path, 使根目录下的模块可以直接 import。
2. 每个测试使用独立的临时 SQLite 数据库。
"""

import os
import sys

import pytest

_ROOT_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT_PATH not in sys.path:
    sys.path.insert(0, _ROOT_PATH)

from WorkspaceDatabase import WorkspaceDatabase  # noqa: E402
from file_system import ProjectFileSystem  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "workspace.db")


@pytest.fixture
def db(db_path):
    database = WorkspaceDatabase(dbpath=db_path)
    yield database
    database.close()


@pytest.fixture
def fs(db):
    return ProjectFileSystem(db)


@pytest.fixture
def author(fs):
    return fs.create_user("alice")


@pytest.fixture
def project(fs, author):
    """根目录名为 <root> 的项目。"""
    return fs.create_project("<root>", author.id)


@pytest.fixture
def sample_structure():
    return [
        {
            "name": "src",
            "path": "/",
            "isFolder": True,
            "files": [
                {"name": "main.py", "path": "/src", "isFolder": False, "language": "python", "content": "print(1)"},
            ],
        }
    ]


def strip_ids(tree):
    """去掉树中的 id, 便于和期望结构比较。"""
    data = {key: value for key, value in tree.items() if key != "id"}
    if "children" in data:
        data["children"] = [strip_ids(child) for child in data["children"]]
    return data
