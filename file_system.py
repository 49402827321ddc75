from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from errors import NotFoundError, ValidationError
from models import FileRecord, Project, TreeNode, User, TYPE_DIRECTORY, TYPE_FILE, coerce_entry
from utils import makeItemPath, splitPath
from WorkspaceDatabase import WorkspaceDatabase
from getGlobalLogger import logger

# 项目根目录下的直接子节点使用的 path
ROOT_PATH = "/"


class ProjectFileSystem:
    """
    项目工作区的文件系统。
    数据库中保存的是扁平的文件/文件夹记录，这里负责:
    1. 把嵌套的目录结构描述批量写入数据库 (build_structure)
    2. 把扁平记录重新组装成目录树用于展示 (build_project_tree)
    """
    def __init__(self, db: WorkspaceDatabase):
        self.db = db

    # ------------------------------------------------------------------
    # 用户 / 项目
    # ------------------------------------------------------------------

    def create_user(self, user_name: str) -> User:
        return self.db.createUser(user_name)

    def create_project(self, project_name: str, owner_id: str) -> Project:
        # 项目和它的根目录一起创建, 任何一步失败都不留下半成品
        with self.db.transaction():
            project = self.db.createProject(project_name, owner_id)
            root_folder = self.db.createFile({
                "name": project_name,
                "path": ROOT_PATH,
                "isFolder": True,
                "authorId": owner_id,
                "projectId": project.id,
            })
            self.db.setProjectRootFolder(project.id, root_folder.id)
        project.root_folder = root_folder.id
        return project

    def get_project(self, project_id: str) -> Project:
        project = self.db.getProjectById(project_id)
        if project is None:
            raise NotFoundError(f"项目不存在: {project_id}")
        return project

    # ------------------------------------------------------------------
    # 单条记录
    # ------------------------------------------------------------------

    def get_file(self, file_id: str) -> FileRecord:
        record = self.db.getFileById(file_id)
        if record is None:
            raise NotFoundError(f"记录不存在: {file_id}")
        return record

    def create_file(self, attributes: dict, parent_id: Optional[str] = None) -> FileRecord:
        """创建单条记录, 并把它追加到父文件夹的 children 中。"""
        attributes = dict(attributes, parentFolder=parent_id)
        with self.db.transaction():
            record = self.db.createFile(attributes)
            self.link_into_parent(parent_id, [record])
        return record

    def link_into_parent(self, parent_id: Optional[str], created: List[FileRecord]):
        """把 created 中直接挂在 parent_id 下的记录追加到该文件夹的 children 中。"""
        if parent_id is None:
            return
        top_level_ids = [f.id for f in created if f.parent_folder == parent_id]
        if not top_level_ids:
            return
        parent = self.get_file(parent_id)
        new_ids = [file_id for file_id in top_level_ids if file_id not in parent.children]
        self.db.updateFile(parent_id, {"children": parent.children + new_ids})

    def delete_file(self, file_id: str, recursive: bool = True) -> int:
        deleted = self.db.deleteFile(file_id, recursive=recursive)
        if not deleted:
            raise NotFoundError(f"记录不存在: {file_id}")
        return deleted

    def search_files(self, project_id: str, keyword: str, page: int = 1):
        self.get_project(project_id)
        return self.db.searchFiles(project_id, keyword, page=page)

    # ------------------------------------------------------------------
    # 批量创建目录结构
    # ------------------------------------------------------------------

    def build_structure(self, structure, parent_id, author_id, project_id,
                        atomic: bool = False, link_parent: bool = False) -> List[FileRecord]:
        """
        按深度优先顺序创建 structure 中描述的所有文件/文件夹。

        Args:
            structure (list): 结构描述列表, 每个条目包含 name / path / isFolder,
                文件额外包含 content / language, 文件夹可以包含嵌套的 files。
            parent_id (str): 父文件夹ID, 顶层条目可以为 None。
            author_id (str): 创建者ID。
            project_id (str): 所属项目ID。
            atomic (bool): 为 True 时整个操作在一个事务中完成, 失败后不保留任何记录。
            link_parent (bool): 为 True 时每个顶层记录创建后立即追加到 parent_id 的 children,
                中途失败时已创建的顶层记录也已经挂好。

        Returns:
            list[FileRecord]: 创建的记录, 文件夹排在它的子孙之前, 兄弟节点保持输入顺序。

        Raises:
            ValidationError: 某个条目写入失败。之前已经创建的记录会保留 (atomic=True 时除外)。

        嵌套层数受 Python 递归深度限制 (默认约 1000 层), 超出时抛出 RecursionError。
        """
        link_to = parent_id if link_parent else None
        if atomic:
            with self.db.transaction():
                return self._create_structure(structure, parent_id, author_id, project_id, link_to)
        return self._create_structure(structure, parent_id, author_id, project_id, link_to)

    def _create_structure(self, structure, parent_id, author_id, project_id, link_to=None) -> List[FileRecord]:
        if not isinstance(structure, (list, tuple)):
            raise ValidationError("目录结构必须是条目列表")

        created_files = []
        for item in structure:
            entry = coerce_entry(item)
            attributes = entry.to_attributes(parent_id, author_id, project_id)

            logger.debug(f"创建文件/文件夹: {entry.name}, 类型: {entry.file_type}, 是否文件夹: {entry.is_folder}")
            try:
                record = self.db.createFile(attributes)
            except ValidationError as e:
                logger.error(f"创建 {entry.name!r} (path: {entry.path!r}) 失败, 已停止后续创建: {e}")
                raise
            logger.info(f"已创建文件/文件夹: {record.name}, 类型: {record.file_type}, 是否文件夹: {record.is_folder}, ID: {record.id}")
            self.link_into_parent(link_to, [record])

            if entry.is_folder and entry.files:
                # 先完整创建子树, 再把直接子节点写回当前文件夹的 children
                descendants = self._create_structure(entry.files, record.id, author_id, project_id)
                child_ids = [f.id for f in descendants if f.parent_folder == record.id]
                record = self.db.updateFile(record.id, {"children": child_ids})
                created_files.append(record)
                created_files.extend(descendants)
            else:
                created_files.append(record)

        return created_files

    # ------------------------------------------------------------------
    # 扁平记录 -> 目录树
    # ------------------------------------------------------------------

    def _load_project_records(self, project_id: str) -> Tuple[FileRecord, List[FileRecord]]:
        project = self.db.getProjectById(project_id)
        if project is None or project.root_folder is None:
            raise NotFoundError(f"项目或项目根目录不存在: {project_id}")
        root_folder = self.db.getFileById(project.root_folder)
        if root_folder is None or root_folder.project_id != project_id:
            raise NotFoundError(f"项目 {project_id} 的根目录不存在: {project.root_folder}")
        return root_folder, self.db.findFiles(project_id)

    def build_project_tree(self, project_id: str) -> TreeNode:
        """
        读取项目的全部扁平记录, 重建目录树。
        无法挂到树上的记录 (孤儿节点) 会被忽略, 只记录一条警告日志。
        """
        root_folder, records = self._load_project_records(project_id)
        root, orphans = self._assemble_tree(root_folder, records)
        if orphans:
            logger.warning(
                f"项目 {project_id} 中有 {len(orphans)} 条记录无法挂到目录树上, 已忽略: "
                + ", ".join(f"{r.full_path} ({r.id})" for r in orphans[:20])
            )
        return root

    def find_orphans(self, project_id: str) -> List[FileRecord]:
        root_folder, records = self._load_project_records(project_id)
        _, orphans = self._assemble_tree(root_folder, records)
        return orphans

    def _make_tree_node(self, record: FileRecord) -> TreeNode:
        node = TreeNode(
            id=record.id,
            name=record.name,
            type=TYPE_DIRECTORY if record.is_folder else TYPE_FILE,
            path=makeItemPath(record.path, record.name),
        )
        if not record.is_folder:
            node.language = record.language
            node.file_type = record.file_type
        return node

    def _resolve_path(self, root: TreeNode, path: str) -> Optional[TreeNode]:
        # 从根节点开始按 path 的每一段逐级查找同名文件夹
        parent = root
        for part in splitPath(path):
            parent = parent.find_child(part)
            if parent is None or not parent.is_folder:
                return None
        return parent

    def _assemble_tree(self, root_folder: FileRecord, records: List[FileRecord]) -> Tuple[TreeNode, List[FileRecord]]:
        """
        records 需按 (path, name) 排序。
        有 parentFolder 的记录按ID挂到父节点下 (从根开始自顶向下遍历一次);
        没有 parentFolder 的记录按 path 查找父节点。
        """
        root = TreeNode(id=root_folder.id, name=root_folder.name, type=TYPE_DIRECTORY)

        # {父记录ID: [子记录, ...]}, 保持 (path, name) 顺序
        children_of: Dict[str, List[FileRecord]] = defaultdict(list)
        unparented: List[FileRecord] = []
        for record in records:
            if record.id == root_folder.id:
                # 根目录本身不重复出现在树中
                continue
            if record.parent_folder is None:
                unparented.append(record)
            else:
                children_of[record.parent_folder].append(record)

        attached = set()

        def attach(parent: TreeNode, record: FileRecord):
            # 显式栈代替递归, 任意深度的树都不会超出递归限制
            stack = [(parent, record)]
            while stack:
                parent_node, current = stack.pop()
                if current.id in attached:
                    continue
                attached.add(current.id)
                node = self._make_tree_node(current)
                parent_node.children.append(node)
                if current.is_folder:
                    # 逆序入栈, 出栈时兄弟节点保持原顺序
                    for child in reversed(children_of.get(current.id, [])):
                        stack.append((node, child))

        for record in children_of.get(root_folder.id, []):
            attach(root, record)

        for record in unparented:
            parent = self._resolve_path(root, record.path)
            if parent is not None:
                attach(parent, record)

        orphans = [r for r in records if r.id != root_folder.id and r.id not in attached]
        return root, orphans
