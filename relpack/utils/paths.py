"""
路径工具

提供目录创建、原子写入和大小格式化等工具函数。
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Union


def ensure_directory(path: Union[str, Path]) -> Path:
    """确保目录存在

    Args:
        path: 目录路径

    Returns:
        Path: 目录路径
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path


def temp_sibling(destination: Path, directory: bool = False) -> Path:
    """在目标路径旁创建隐藏的临时文件/目录

    临时路径与目标位于同一目录，保证 os.replace 是同一文件系统上的原子重命名。
    """
    parent = ensure_directory(destination.parent)
    prefix = f".{destination.name}."
    if directory:
        return Path(tempfile.mkdtemp(prefix=prefix, suffix=".tmp", dir=parent))

    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".tmp", dir=parent)
    os.close(fd)
    return Path(name)


def remove_path(path: Path) -> None:
    """删除文件或目录（不存在时忽略）"""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path, ignore_errors=True)
    else:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def replace_path(source: Path, destination: Path) -> None:
    """用 source 原子替换 destination

    目录无法被 os.replace 覆盖，需要先移除旧目录。
    """
    if destination.is_dir() and not destination.is_symlink():
        shutil.rmtree(destination)
    os.replace(source, destination)


def format_size(size_bytes: int) -> str:
    """格式化文件大小

    Args:
        size_bytes: 字节数

    Returns:
        str: 格式化的大小字符串
    """
    if size_bytes == 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB"]
    unit_index = 0
    size = float(size_bytes)

    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1

    if unit_index == 0:
        return f"{int(size)} {units[unit_index]}"
    return f"{size:.1f} {units[unit_index]}"


def is_safe_filename(filename: str) -> bool:
    """检查文件名是否安全（可用于输出包名）

    Args:
        filename: 文件名

    Returns:
        bool: 是否安全
    """
    illegal_chars = '<>:"/\\|?*'

    if not filename or filename in ('.', '..'):
        return False

    if any(char in filename for char in illegal_chars):
        return False

    # Windows 保留名称
    reserved_names = {
        'CON', 'PRN', 'AUX', 'NUL',
        'COM1', 'COM2', 'COM3', 'COM4', 'COM5', 'COM6', 'COM7', 'COM8', 'COM9',
        'LPT1', 'LPT2', 'LPT3', 'LPT4', 'LPT5', 'LPT6', 'LPT7', 'LPT8', 'LPT9'
    }

    name_only = filename.split('.')[0].upper()
    if name_only in reserved_names:
        return False

    return len(filename) <= 255
