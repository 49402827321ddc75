import datetime
import uuid

from getGlobalLogger import logger


# 把以 / 分隔的路径拆成非空片段: "/src/app/" -> ["src", "app"]
def splitPath(path):
    if not path:
        return []
    return [part for part in path.split("/") if part]


# fullPath: 祖先路径 + 自身名称, 例如 ("/", "src") -> "/src", ("/src", "main.py") -> "/src/main.py"
def makeFullPath(path, name):
    return "/" + "/".join(splitPath(path) + [name])


# 树节点展示用的相对路径 (不带前导 /), 例如 ("/", "src") -> "src", ("/src", "main.py") -> "src/main.py"
def makeItemPath(path, name):
    return "/".join(splitPath(path) + [name])


# 生成记录ID (32位十六进制字符串, 对外视为不透明值)
def newId():
    return uuid.uuid4().hex


# 当前 UTC 时间, 精确到微秒, 保证同一秒内创建的记录也能比较先后
def nowTimestamp():
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="microseconds")


# 文件内容统一存为 bytes, 传入 str 时按 UTF-8 编码
def encodeContent(content):
    if content is None:
        return None
    if isinstance(content, str):
        return content.encode("utf-8")
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    raise TypeError(f"不支持的文件内容类型: {type(content).__name__}")


# 全文搜索用的文本: 文件名 + 能解码的文件内容
def getSearchText(name, content):
    text = name or ""
    if content:
        try:
            text += "\n" + content.decode("utf-8")
        except UnicodeDecodeError:
            # 二进制内容只索引文件名
            logger.debug(f"文件 {name} 的内容不是 UTF-8 文本, 仅索引文件名")
    return text


# 内部函数：获取文件名对应的图标
def _get_icon(file_name: str) -> str:
    if not file_name or '.' not in file_name:
        return "📄"

    file_type = file_name.split('.')[-1].lower()
    if file_type in ['py', 'c', 'cpp', 'cc', 'h', 'hpp', 'java', 'js', 'ts', 'go', 'rs', 'rb', 'kt', 'cs']:
        return "📝"
    elif file_type in ['in', 'out', 'txt', 'ans']:
        return "🧾"
    elif file_type in ['png', 'jpg', 'jpeg', 'gif', 'bmp', 'svg', 'webp']:
        return "🖼️"
    elif file_type in ['zip', 'rar', '7z', 'tar', 'gz', 'bz2']:
        return "📦"
    else:
        return "📄"


# 把重建后的目录树渲染为文本行 (文件夹在前, 同类按名称排序)
def renderTree(root) -> list:
    tree_lines = [f"📂 {root.name}"]

    def generate_lines_for_list_recursive(item_list, base_prefix):
        item_list = sorted(item_list, key=lambda x: (not x.is_folder, x.name))
        num_items = len(item_list)
        for i, item in enumerate(item_list):
            is_last = (i == num_items - 1)
            icon = "📂" if item.is_folder else _get_icon(item.name)
            connector = "└── " if is_last else "├── "
            tree_lines.append(f"{base_prefix}{connector}{icon} {item.name}")

            children_prefix = base_prefix + ("    " if is_last else "│   ")
            if item.children:
                generate_lines_for_list_recursive(item.children, children_prefix)

    generate_lines_for_list_recursive(root.children, "")
    return tree_lines
