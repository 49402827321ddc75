import argparse
import json
import sys

import yaml
from tqdm import tqdm

from errors import WorkspaceError
from file_system import ProjectFileSystem
from settings import load_settings
from utils import renderTree
from WorkspaceDatabase import WorkspaceDatabase
from getGlobalLogger import logger


def load_structure_file(file_path):
    # 支持 .json 和 .yaml/.yml, 文件内容可以是条目列表, 也可以是 {"files": [...]}
    with open(file_path, "r", encoding="utf-8") as f:
        if file_path.endswith(".json"):
            data = json.load(f)
        else:
            data = yaml.safe_load(f.read())
    if isinstance(data, dict):
        data = data.get("files")
    if not isinstance(data, list):
        raise ValueError(f"{file_path}: 目录结构必须是条目列表")
    return data


def import_structure(fs: ProjectFileSystem, structure, project_id, author_id, parent_id=None, atomic=False):
    """
    逐个顶层条目导入目录结构并显示进度, 返回创建的全部记录。
    每个顶层条目 (连同其子树) 是一次 build_structure 调用, 创建顺序与一次性调用相同。
    顶层记录创建后立即追加到父文件夹的 children 中。
    """
    created_files = []

    def _run():
        tqdm_bar = tqdm(total=len(structure), desc="导入目录结构")
        try:
            for entry in structure:
                created_files.extend(
                    fs.build_structure([entry], parent_id, author_id, project_id, link_parent=True)
                )
                tqdm_bar.update(1)
        finally:
            tqdm_bar.close()

    if atomic:
        with fs.db.transaction():
            _run()
    else:
        _run()
    return created_files


def main(argv=None):
    parser = argparse.ArgumentParser(description="把 YAML/JSON 描述的目录结构导入到项目中")
    parser.add_argument("structure_file", help="目录结构文件 (.yaml / .yml / .json)")
    parser.add_argument("--project", required=True, help="项目ID")
    parser.add_argument("--author", required=True, help="创建者ID")
    parser.add_argument("--parent", default=None, help="父文件夹ID, 默认为项目根目录")
    parser.add_argument("--atomic", action="store_true", help="任一条目失败时回滚全部已创建的记录")
    parser.add_argument("--db", default=None, help="数据库文件路径, 默认读取 settings.yaml 中的 DATABASE_PATH")
    args = parser.parse_args(argv)

    settings_data = load_settings()
    db = WorkspaceDatabase(dbpath=args.db or settings_data.get("DATABASE_PATH"))
    fs = ProjectFileSystem(db)
    try:
        structure = load_structure_file(args.structure_file)
        parent_id = args.parent
        if parent_id is None:
            parent_id = fs.get_project(args.project).root_folder

        created = import_structure(fs, structure, args.project, args.author, parent_id=parent_id, atomic=args.atomic)
        logger.info(f"导入完成, 共创建 {len(created)} 条记录")

        for line in renderTree(fs.build_project_tree(args.project)):
            print(line)
        return 0
    except (WorkspaceError, ValueError, OSError, yaml.YAMLError) as e:
        logger.error(f"导入失败: {e}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
