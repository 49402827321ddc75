import json
import os
import re
import sqlite3
from contextlib import contextmanager

from errors import NotFoundError, ValidationError, WorkspaceError
from models import FileRecord, JudgeTestcase, Project, User, FILE_TYPES, DEFAULT_FILE_TYPE
from utils import newId, nowTimestamp, encodeContent, getSearchText
from getGlobalLogger import logger

# FILES 表的列顺序, 与 _rowToFileRecord 对应
FILE_COLUMNS = (
    "fileId, name, path, isFolder, content, language, parentFolder, authorId, "
    "projectId, fileType, children, testcases, createdAt, updatedAt"
)

# 允许通过 updateFile 修改的字段
UPDATABLE_FIELDS = {"name", "path", "content", "language", "fileType", "children", "testcases", "parentFolder"}

# 搜索结果每页条数
SEARCH_PAGE_LIMIT = 100


class WorkspaceDatabase:
    def __init__(self, dbpath):
        # 确保数据库目录存在
        db_dir = os.path.dirname(dbpath)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        self.conn = sqlite3.connect(dbpath, check_same_thread=False)
        self.database = self.conn.cursor()
        # 嵌套事务的层数, 只有最外层负责 COMMIT / ROLLBACK
        self._transactionDepth = 0

        # USERS (
        #   userId TEXT PRIMARY KEY,  -- 用户ID
        #   userName TEXT UNIQUE,     -- 用户名
        #   createdAt TEXT            -- 创建时间 (UTC)
        # )
        self.database.execute("""
            CREATE TABLE IF NOT EXISTS USERS (
                userId TEXT PRIMARY KEY,
                userName TEXT NOT NULL UNIQUE,
                createdAt TEXT NOT NULL
            )
        """)

        # PROJECTS (
        #   projectId TEXT PRIMARY KEY,  -- 项目ID
        #   projectName TEXT,            -- 项目名
        #   ownerId TEXT,                -- 创建者 (USERS.userId)
        #   rootFolder TEXT,             -- 项目根目录 (FILES.fileId), 可以为空
        #   createdAt TEXT               -- 创建时间 (UTC)
        # )
        self.database.execute("""
            CREATE TABLE IF NOT EXISTS PROJECTS (
                projectId TEXT PRIMARY KEY,
                projectName TEXT NOT NULL,
                ownerId TEXT NOT NULL,
                rootFolder TEXT,
                createdAt TEXT NOT NULL
            )
        """)

        # FILES: 扁平存储的文件/文件夹记录
        # path 为祖先路径 (不含自身 name), parentFolder 指向父文件夹,
        # children 为子记录ID的 JSON 数组, testcases 为 [{"input": id, "output": id|null}] 的 JSON 数组
        self.database.execute("""
            CREATE TABLE IF NOT EXISTS FILES (
                fileId TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                path TEXT NOT NULL,
                isFolder BOOLEAN NOT NULL DEFAULT 0,
                content BLOB,
                language TEXT,
                parentFolder TEXT,
                authorId TEXT NOT NULL,
                projectId TEXT NOT NULL,
                fileType TEXT NOT NULL DEFAULT 'other',
                children TEXT NOT NULL DEFAULT '[]',
                testcases TEXT NOT NULL DEFAULT '[]',
                createdAt TEXT NOT NULL,
                updatedAt TEXT NOT NULL
            )
        """)
        # 重建目录树时按 (projectId, path, name) 排序读取
        self.database.execute("CREATE INDEX IF NOT EXISTS FILES_PROJECT_PATH ON FILES (projectId, path, name)")
        self.database.execute("CREATE INDEX IF NOT EXISTS FILES_PARENT ON FILES (parentFolder)")

        # 创建 FTS 搜索表 FILES_SEARCH
        # fileId / projectId 用于关联回主表，UNINDEXED 表示不参与 FTS 的词汇索引
        # searchText 存储文件名和文件内容的拼接文本
        self.database.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS FILES_SEARCH USING fts5(
                fileId UNINDEXED,
                projectId UNINDEXED,
                searchText,
                tokenize = 'unicode61'
            )
        """)

        self.conn.commit()

    @contextmanager
    def transaction(self):
        # 支持嵌套: 内层只增加计数, 由最外层统一提交或回滚
        outermost = self._transactionDepth == 0
        if outermost and not self.conn.in_transaction:
            self.conn.execute('BEGIN')
        self._transactionDepth += 1
        try:
            yield self
        except Exception as e:
            self._transactionDepth -= 1
            if outermost:
                self.conn.rollback()
                if isinstance(e, WorkspaceError):
                    logger.debug(f"事务已回滚: {e}")
                else:
                    logger.error(f"数据库操作失败, 事务已回滚: {e}", exc_info=True)
            raise
        else:
            self._transactionDepth -= 1
            if outermost:
                self.conn.commit()

    # ------------------------------------------------------------------
    # 用户 / 项目
    # ------------------------------------------------------------------

    def createUser(self, userName: str) -> User:
        if not isinstance(userName, str) or not userName.strip():
            raise ValidationError("userName 为必填项")
        self.database.execute("SELECT 1 FROM USERS WHERE userName=?", (userName,))
        if self.database.fetchone():
            raise ValidationError(f"用户名已存在: {userName}")
        user = User(id=newId(), user_name=userName, created_at=nowTimestamp())
        try:
            with self.transaction():
                self.database.execute(
                    "INSERT INTO USERS (userId, userName, createdAt) VALUES (?, ?, ?)",
                    (user.id, user.user_name, user.created_at)
                )
        except sqlite3.IntegrityError:
            raise ValidationError(f"用户名已存在: {userName}")
        logger.info(f"创建用户: {userName} (userId: {user.id})")
        return user

    def getUserById(self, userId: str):
        self.database.execute("SELECT userId, userName, createdAt FROM USERS WHERE userId=?", (userId,))
        row = self.database.fetchone()
        if row is None:
            return None
        return User(id=row[0], user_name=row[1], created_at=row[2])

    def createProject(self, projectName: str, ownerId: str) -> Project:
        if not isinstance(projectName, str) or not projectName.strip():
            raise ValidationError("projectName 为必填项")
        if self.getUserById(ownerId) is None:
            raise ValidationError(f"无效的 ownerId: {ownerId}")
        project = Project(id=newId(), project_name=projectName, owner_id=ownerId, created_at=nowTimestamp())
        with self.transaction():
            self.database.execute(
                "INSERT INTO PROJECTS (projectId, projectName, ownerId, rootFolder, createdAt) VALUES (?, ?, ?, ?, ?)",
                (project.id, project.project_name, project.owner_id, None, project.created_at)
            )
        logger.info(f"创建项目: {projectName} (projectId: {project.id})")
        return project

    def getProjectById(self, projectId: str):
        self.database.execute(
            "SELECT projectId, projectName, ownerId, rootFolder, createdAt FROM PROJECTS WHERE projectId=?",
            (projectId,)
        )
        row = self.database.fetchone()
        if row is None:
            return None
        return Project(id=row[0], project_name=row[1], owner_id=row[2], root_folder=row[3], created_at=row[4])

    def setProjectRootFolder(self, projectId: str, fileId: str):
        if self.getProjectById(projectId) is None:
            raise NotFoundError(f"项目不存在: {projectId}")
        folder = self.getFileById(fileId)
        if folder is None or folder.project_id != projectId or not folder.is_folder:
            raise ValidationError(f"根目录必须是同一项目中的文件夹: {fileId}")
        with self.transaction():
            self.database.execute("UPDATE PROJECTS SET rootFolder=? WHERE projectId=?", (fileId, projectId))
        logger.debug(f"项目 {projectId} 的根目录设置为 {fileId}")

    # ------------------------------------------------------------------
    # 文件 / 文件夹
    # ------------------------------------------------------------------

    def _rowToFileRecord(self, row) -> FileRecord:
        (fileId, name, path, isFolder, content, language, parentFolder, authorId,
         projectId, fileType, children, testcases, createdAt, updatedAt) = row
        return FileRecord(
            id=fileId,
            name=name,
            path=path,
            # sqlite 里读出来的是 0/1, 转成 bool
            is_folder=bool(isFolder),
            content=bytes(content) if content is not None else None,
            language=language,
            parent_folder=parentFolder,
            author_id=authorId,
            project_id=projectId,
            file_type=fileType,
            children=json.loads(children),
            testcases=[JudgeTestcase(input=t.get("input"), output=t.get("output")) for t in json.loads(testcases)],
            created_at=createdAt,
            updated_at=updatedAt,
        )

    def _validateFileData(self, data: dict, fileId: str) -> dict:
        """
        校验并规范化一条文件记录的字段, 返回可直接写入 FILES 表的字典。
        规则: 文件必须有 content (可以是空字节串) 和 language; 文件夹不保存这两项;
        projectId / authorId 必须存在; parentFolder 必须是同一项目中的文件夹。
        """
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValidationError("name 为必填项")
        path = data.get("path")
        if not isinstance(path, str) or not path:
            raise ValidationError(f"{name}: path 为必填项")

        isFolder = bool(data.get("isFolder", False))
        fileType = data.get("fileType") or DEFAULT_FILE_TYPE
        if fileType not in FILE_TYPES:
            raise ValidationError(f"{name}: 无效的 fileType '{fileType}', 可选值: {', '.join(FILE_TYPES)}")

        if isFolder:
            content = None
            language = None
        else:
            try:
                content = encodeContent(data.get("content"))
            except TypeError as e:
                raise ValidationError(f"{name}: {e}")
            if content is None:
                raise ValidationError(f"{name}: 文件的 content 为必填项")
            language = data.get("language")
            if not isinstance(language, str) or not language:
                raise ValidationError(f"{name}: 文件的 language 为必填项")

        projectId = data.get("projectId")
        if not projectId or self.getProjectById(projectId) is None:
            raise ValidationError(f"{name}: 无效的 projectId: {projectId}")
        authorId = data.get("authorId")
        if not authorId or self.getUserById(authorId) is None:
            raise ValidationError(f"{name}: 无效的 authorId: {authorId}")

        parentFolder = data.get("parentFolder")
        if parentFolder is not None:
            if parentFolder == fileId:
                raise ValidationError(f"{name}: parentFolder 不能指向自身")
            parent = self.getFileById(parentFolder)
            if parent is None:
                raise ValidationError(f"{name}: parentFolder 不存在: {parentFolder}")
            if parent.project_id != projectId:
                raise ValidationError(f"{name}: parentFolder 属于其他项目: {parentFolder}")
            if not parent.is_folder:
                raise ValidationError(f"{name}: parentFolder 不是文件夹: {parentFolder}")

        children = list(data.get("children") or [])
        if children:
            if not isFolder:
                raise ValidationError(f"{name}: 只有文件夹可以有 children")
            for childId in children:
                child = self.getFileById(childId)
                if child is None or child.parent_folder != fileId:
                    raise ValidationError(f"{name}: children 中的 {childId} 的 parentFolder 不是当前文件夹")

        testcases = []
        for testcase in data.get("testcases") or []:
            if isinstance(testcase, JudgeTestcase):
                testcase = testcase.to_dict()
            inputId = testcase.get("input")
            outputId = testcase.get("output")
            if not inputId:
                raise ValidationError(f"{name}: testcase 缺少 input")
            for refId in (inputId, outputId):
                if refId is None:
                    continue
                ref = self.getFileById(refId)
                if ref is None or ref.project_id != projectId:
                    raise ValidationError(f"{name}: testcase 引用了无效的文件: {refId}")
            testcases.append({"input": inputId, "output": outputId})

        return {
            "name": name,
            "path": path,
            "isFolder": isFolder,
            "content": content,
            "language": language,
            "parentFolder": parentFolder,
            "authorId": authorId,
            "projectId": projectId,
            "fileType": fileType,
            "children": children,
            "testcases": testcases,
        }

    def createFile(self, attributes: dict) -> FileRecord:
        fileId = newId()
        data = self._validateFileData(attributes, fileId)
        now = nowTimestamp()
        # 主表和 FTS 表在同一个事务里写入
        with self.transaction():
            self.database.execute(
                f"INSERT INTO FILES ({FILE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    fileId, data["name"], data["path"], data["isFolder"], data["content"], data["language"],
                    data["parentFolder"], data["authorId"], data["projectId"], data["fileType"],
                    json.dumps(data["children"]), json.dumps(data["testcases"]), now, now,
                )
            )
            self.database.execute(
                "INSERT INTO FILES_SEARCH (fileId, projectId, searchText) VALUES (?, ?, ?)",
                (fileId, data["projectId"], getSearchText(data["name"], data["content"]))
            )
        logger.debug(f"成功插入记录: fileId={fileId}, name={data['name']}, path={data['path']}, isFolder={data['isFolder']}")
        return self.getFileById(fileId)

    def updateFile(self, fileId: str, attributes: dict) -> FileRecord:
        record = self.getFileById(fileId)
        if record is None:
            raise NotFoundError(f"记录不存在: {fileId}")
        invalid_fields = set(attributes) - UPDATABLE_FIELDS
        if invalid_fields:
            raise ValidationError(f"以下字段不可修改: {', '.join(sorted(invalid_fields))}")

        merged = {
            "name": record.name,
            "path": record.path,
            "isFolder": record.is_folder,
            "content": record.content,
            "language": record.language,
            "parentFolder": record.parent_folder,
            "authorId": record.author_id,
            "projectId": record.project_id,
            "fileType": record.file_type,
            "children": record.children,
            "testcases": record.testcases,
        }
        merged.update(attributes)
        data = self._validateFileData(merged, fileId)

        # 移动记录时不允许移动到自己的子孙文件夹下
        if data["parentFolder"] is not None and data["parentFolder"] != record.parent_folder:
            ancestorId = data["parentFolder"]
            while ancestorId is not None:
                if ancestorId == fileId:
                    raise ValidationError(f"{record.name}: 不能移动到自己的子孙文件夹下")
                ancestor = self.getFileById(ancestorId)
                ancestorId = ancestor.parent_folder if ancestor else None

        with self.transaction():
            self.database.execute(
                """UPDATE FILES SET name=?, path=?, content=?, language=?, parentFolder=?, fileType=?,
                   children=?, testcases=?, updatedAt=? WHERE fileId=?""",
                (
                    data["name"], data["path"], data["content"], data["language"], data["parentFolder"],
                    data["fileType"], json.dumps(data["children"]), json.dumps(data["testcases"]),
                    nowTimestamp(), fileId,
                )
            )
            # 名称或内容变化时同步更新 FTS 表 (先删除再插入)
            if "name" in attributes or "content" in attributes:
                self.database.execute("DELETE FROM FILES_SEARCH WHERE fileId=?", (fileId,))
                self.database.execute(
                    "INSERT INTO FILES_SEARCH (fileId, projectId, searchText) VALUES (?, ?, ?)",
                    (fileId, data["projectId"], getSearchText(data["name"], data["content"]))
                )
        logger.debug(f"已更新记录 {fileId}: {', '.join(sorted(attributes))}")
        return self.getFileById(fileId)

    def getFileById(self, fileId: str):
        self.database.execute(f"SELECT {FILE_COLUMNS} FROM FILES WHERE fileId=?", (fileId,))
        row = self.database.fetchone()
        if row is None:
            return None
        return self._rowToFileRecord(row)

    def findFiles(self, projectId: str):
        # 返回项目内的所有记录, 按 (path, name) 升序; 同名同路径的记录按创建时间排序
        self.database.execute(
            f"SELECT {FILE_COLUMNS} FROM FILES WHERE projectId=? ORDER BY path ASC, name ASC, createdAt ASC",
            (projectId,)
        )
        return [self._rowToFileRecord(row) for row in self.database.fetchall()]

    def _collectSubtreeIds(self, fileId: str):
        subtree = [fileId]
        index = 0
        while index < len(subtree):
            self.database.execute("SELECT fileId FROM FILES WHERE parentFolder=?", (subtree[index],))
            for (childId,) in self.database.fetchall():
                if childId not in subtree:
                    subtree.append(childId)
            index += 1
        return subtree

    def deleteFile(self, fileId: str, recursive: bool = True) -> int:
        """
        删除一条记录, 返回删除的记录数。
        recursive=True 时连同所有子孙记录一起删除;
        recursive=False 时只删除该记录本身, 子孙记录保留 (重建目录树时会成为孤儿节点)。
        """
        record = self.getFileById(fileId)
        if record is None:
            logger.debug(f"尝试删除 fileId: {fileId}, 但记录不存在。")
            return 0

        targetIds = self._collectSubtreeIds(fileId) if recursive else [fileId]
        placeholders = ", ".join("?" for _ in targetIds)

        with self.transaction():
            self.database.execute(f"DELETE FROM FILES WHERE fileId IN ({placeholders})", targetIds)
            self.database.execute(f"DELETE FROM FILES_SEARCH WHERE fileId IN ({placeholders})", targetIds)

            # 从父文件夹的 children 中移除
            if record.parent_folder is not None:
                parent = self.getFileById(record.parent_folder)
                if parent is not None and fileId in parent.children:
                    children = [childId for childId in parent.children if childId != fileId]
                    self.database.execute(
                        "UPDATE FILES SET children=?, updatedAt=? WHERE fileId=?",
                        (json.dumps(children), nowTimestamp(), parent.id)
                    )

            # 删除的是项目根目录时, 清空项目的 rootFolder
            self.database.execute(
                f"UPDATE PROJECTS SET rootFolder=NULL WHERE rootFolder IN ({placeholders})", targetIds
            )

        logger.warning(f"已删除 {len(targetIds)} 条记录 (fileId: {fileId}, recursive: {recursive})")
        return len(targetIds)

    def searchFiles(self, projectId: str, keyword: str, page: int = 1):
        # 返回 [FileRecord, ...], is_end_page
        # 同时进行 FTS MATCH 搜索 (文件名 + 内容) 和文件名的 LIKE 搜索, UNION 自动去重
        if not keyword or not keyword.strip():
            return [], True
        if page < 1:
            page = 1
        offset = (page - 1) * SEARCH_PAGE_LIMIT

        # LIKE 的通配符按字面匹配
        like_keyword = "%" + keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"

        name_sql = """
                SELECT f.fileId FROM FILES f
                WHERE f.name LIKE ? ESCAPE '\\' AND f.projectId = ?
        """
        if re.search(r"[^\W_]", keyword):
            # 用双引号包裹关键字, 避免用户输入被解析为 FTS 查询语法
            match_keyword = '"' + keyword.replace('"', '""') + '"'
            matched_sql = """
            WITH MatchedIds AS (
                SELECT s.fileId FROM FILES_SEARCH s
                WHERE s.searchText MATCH ? AND s.projectId = ?
                UNION""" + name_sql + """
            )
        """
            params = (match_keyword, projectId, like_keyword, projectId)
        else:
            # 只有标点符号时分词结果为空, 只按文件名搜索
            matched_sql = "WITH MatchedIds AS (" + name_sql + ")\n"
            params = (like_keyword, projectId)

        self.database.execute(matched_sql + "SELECT COUNT(*) FROM MatchedIds", params)
        total_records = self.database.fetchone()[0]

        self.database.execute(
            matched_sql + f"""
            SELECT {', '.join('f.' + column.strip() for column in FILE_COLUMNS.split(','))}
            FROM FILES f JOIN MatchedIds m ON f.fileId = m.fileId
            ORDER BY f.path ASC, f.name ASC
            LIMIT ? OFFSET ?
            """,
            params + (SEARCH_PAGE_LIMIT, offset)
        )
        results = [self._rowToFileRecord(row) for row in self.database.fetchall()]

        is_end_page = (page * SEARCH_PAGE_LIMIT) >= total_records
        logger.debug(f"搜索 '{keyword}' (projectId: {projectId}, 第{page}页): 共 {total_records} 条")
        return results, is_end_page

    def close(self):
        if self.conn:
            self.conn.close()
