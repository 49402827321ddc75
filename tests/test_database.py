import pytest

from errors import NotFoundError, ValidationError


def _file(project, author, **overrides):
    attributes = {
        "name": "main.py",
        "path": "/",
        "isFolder": False,
        "content": b"print(1)",
        "language": "python",
        "authorId": author.id,
        "projectId": project.id,
        "parentFolder": project.root_folder,
    }
    attributes.update(overrides)
    return attributes


def _folder(project, author, **overrides):
    attributes = {
        "name": "src",
        "path": "/",
        "isFolder": True,
        "authorId": author.id,
        "projectId": project.id,
        "parentFolder": project.root_folder,
    }
    attributes.update(overrides)
    return attributes


# -----------------------------------------------------------------------------
# 用户 / 项目
# -----------------------------------------------------------------------------

def test_duplicate_user_name_is_rejected(db, author):
    with pytest.raises(ValidationError):
        db.createUser("alice")


def test_project_requires_existing_owner(db):
    with pytest.raises(ValidationError):
        db.createProject("demo", "no-such-user")


def test_project_gets_root_folder(db, project):
    stored = db.getProjectById(project.id)
    root = db.getFileById(stored.root_folder)
    assert root.is_folder
    assert root.name == "<root>"
    assert root.path == "/"
    assert root.parent_folder is None


def test_root_folder_must_be_folder_of_same_project(db, fs, author, project):
    other = fs.create_project("other", author.id)
    with pytest.raises(ValidationError):
        db.setProjectRootFolder(project.id, other.root_folder)
    with pytest.raises(NotFoundError):
        db.setProjectRootFolder("missing", project.root_folder)


# -----------------------------------------------------------------------------
# 字段校验
# -----------------------------------------------------------------------------

def test_create_file_round_trip(db, project, author):
    record = db.createFile(_file(project, author, content="print('hi')", fileType="main"))
    stored = db.getFileById(record.id)
    assert stored.content == b"print('hi')"
    assert stored.language == "python"
    assert stored.file_type == "main"
    assert stored.is_folder is False
    assert stored.created_at == stored.updated_at


def test_empty_content_is_allowed(db, project, author):
    record = db.createFile(_file(project, author, content=b""))
    assert record.content == b""


@pytest.mark.parametrize("overrides", [
    {"language": None},
    {"language": ""},
    {"content": None},
    {"name": ""},
    {"path": None},
    {"fileType": "solution"},
    {"projectId": "missing"},
    {"authorId": "missing"},
    {"parentFolder": "missing"},
])
def test_create_file_validation(db, project, author, overrides):
    with pytest.raises(ValidationError):
        db.createFile(_file(project, author, **overrides))


def test_folder_drops_content_and_language(db, project, author):
    record = db.createFile(_folder(project, author, content=b"x", language="python"))
    assert record.content is None
    assert record.language is None


def test_parent_must_be_folder(db, project, author):
    parent_file = db.createFile(_file(project, author))
    with pytest.raises(ValidationError):
        db.createFile(_file(project, author, name="b.py", parentFolder=parent_file.id))


def test_cross_project_parent_is_rejected(db, fs, project, author):
    other = fs.create_project("other", author.id)
    with pytest.raises(ValidationError):
        db.createFile(_file(project, author, parentFolder=other.root_folder))


def test_testcases_reference_files_of_same_project(db, fs, project, author):
    case_in = db.createFile(_file(project, author, name="1.in", language="text", fileType="input"))
    case_out = db.createFile(_file(project, author, name="1.out", language="text", fileType="output"))
    record = db.createFile(_file(project, author, testcases=[
        {"input": case_in.id, "output": case_out.id},
        {"input": case_in.id},
    ]))
    assert [t.to_dict() for t in record.testcases] == [
        {"input": case_in.id, "output": case_out.id},
        {"input": case_in.id, "output": None},
    ]

    other = fs.create_project("other", author.id)
    foreign = db.createFile(_file(other, author, name="2.in"))
    with pytest.raises(ValidationError):
        db.createFile(_file(project, author, name="x.py", testcases=[{"input": foreign.id}]))
    with pytest.raises(ValidationError):
        db.createFile(_file(project, author, name="y.py", testcases=[{"output": case_out.id}]))


# -----------------------------------------------------------------------------
# 更新
# -----------------------------------------------------------------------------

def test_children_must_point_back_to_folder(db, project, author):
    src = db.createFile(_folder(project, author))
    inside = db.createFile(_file(project, author, path="/src", parentFolder=src.id))
    outside = db.createFile(_file(project, author, name="top.py"))

    updated = db.updateFile(src.id, {"children": [inside.id]})
    assert updated.children == [inside.id]

    with pytest.raises(ValidationError):
        db.updateFile(src.id, {"children": [outside.id]})
    with pytest.raises(ValidationError):
        db.updateFile(inside.id, {"children": [outside.id]})


def test_update_rejects_immutable_fields(db, project, author):
    record = db.createFile(_file(project, author))
    with pytest.raises(ValidationError):
        db.updateFile(record.id, {"projectId": "other"})
    with pytest.raises(ValidationError):
        db.updateFile(record.id, {"isFolder": True})
    with pytest.raises(NotFoundError):
        db.updateFile("missing", {"name": "x"})


def test_update_content_refreshes_timestamp_and_search(db, project, author):
    record = db.createFile(_file(project, author))
    updated = db.updateFile(record.id, {"content": "needle = 1"})
    assert updated.content == b"needle = 1"
    assert updated.updated_at >= record.updated_at
    results, _ = db.searchFiles(project.id, "needle")
    assert [r.id for r in results] == [record.id]


def test_folder_cannot_move_into_its_descendant(db, project, author):
    src = db.createFile(_folder(project, author))
    inner = db.createFile(_folder(project, author, name="inner", path="/src", parentFolder=src.id))
    with pytest.raises(ValidationError):
        db.updateFile(src.id, {"parentFolder": inner.id})


# -----------------------------------------------------------------------------
# 查询 / 事务
# -----------------------------------------------------------------------------

def test_find_files_sorted_by_path_then_name(db, project, author):
    db.createFile(_file(project, author, name="b.py", path="/src"))
    db.createFile(_file(project, author, name="z.py", path="/"))
    db.createFile(_file(project, author, name="a.py", path="/src"))
    records = db.findFiles(project.id)
    assert [(r.path, r.name) for r in records] == [
        ("/", "<root>"),
        ("/", "z.py"),
        ("/src", "a.py"),
        ("/src", "b.py"),
    ]


def test_transaction_rolls_back_on_error(db, project, author):
    with pytest.raises(ValidationError):
        with db.transaction():
            db.createFile(_file(project, author, name="kept.py"))
            db.createFile(_file(project, author, name="broken.py", language=None))
    assert [r.name for r in db.findFiles(project.id)] == ["<root>"]


def test_search_matches_name_and_content(db, project, author):
    by_content = db.createFile(_file(project, author, name="solver.py", content="def dijkstra(): pass"))
    by_name = db.createFile(_file(project, author, name="dijkstra_notes.md", content="", language="markdown"))
    db.createFile(_file(project, author, name="other.py", content="x = 1"))

    results, is_end_page = db.searchFiles(project.id, "dijkstra")
    assert {r.id for r in results} == {by_content.id, by_name.id}
    assert is_end_page is True
    assert db.searchFiles(project.id, "   ") == ([], True)


def test_search_treats_like_wildcards_literally(db, project, author):
    percent = db.createFile(_file(project, author, name="100%.txt", content="", language="text"))
    db.createFile(_file(project, author, name="100x.txt", content="", language="text"))
    underscore = db.createFile(_file(project, author, name="a_b.py", content=""))
    db.createFile(_file(project, author, name="axb.py", content=""))
    backslash = db.createFile(_file(project, author, name="dir\\name.txt", content="", language="text"))

    assert [r.id for r in db.searchFiles(project.id, "%")[0]] == [percent.id]
    assert [r.id for r in db.searchFiles(project.id, "_")[0]] == [underscore.id]
    assert [r.id for r in db.searchFiles(project.id, "a_b")[0]] == [underscore.id]
    assert [r.id for r in db.searchFiles(project.id, "\\")[0]] == [backslash.id]


# -----------------------------------------------------------------------------
# 删除
# -----------------------------------------------------------------------------

def test_recursive_delete_removes_subtree_and_unlinks_parent(db, fs, project, author):
    created = fs.build_structure([
        {"name": "src", "path": "/", "isFolder": True, "files": [
            {"name": "lib", "path": "/src", "isFolder": True, "files": [
                {"name": "util.py", "path": "/src/lib", "language": "python"},
            ]},
            {"name": "main.py", "path": "/src", "language": "python"},
        ]},
    ], project.root_folder, author.id, project.id)
    src, lib = created[0], created[1]

    assert db.deleteFile(lib.id) == 2
    assert db.getFileById(src.id).children == [created[3].id]
    assert {r.name for r in db.findFiles(project.id)} == {"<root>", "src", "main.py"}
    assert db.searchFiles(project.id, "util") == ([], True)


def test_non_recursive_delete_leaves_descendants(db, fs, project, author):
    created = fs.build_structure([
        {"name": "src", "path": "/", "isFolder": True, "files": [
            {"name": "main.py", "path": "/src", "language": "python"},
        ]},
    ], project.root_folder, author.id, project.id)
    assert db.deleteFile(created[0].id, recursive=False) == 1
    assert db.getFileById(created[1].id) is not None


def test_deleting_root_folder_clears_project_root(db, project):
    db.deleteFile(project.root_folder)
    assert db.getProjectById(project.id).root_folder is None


def test_delete_missing_returns_zero(db):
    assert db.deleteFile("missing") == 0
