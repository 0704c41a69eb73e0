"""
文件收集器

扫描目录树，按包含/排除正则规则过滤，生成不可变的目录快照。

遍历顺序：深度优先，每一层目录内按名称字典序访问。只输出普通文件，
目录本身和符号链接（文件或目录）都不会出现在结果中。
"""

import hashlib
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Pattern, Sequence, Union

from ..errors import InvalidPatternError, NotFoundError
from ..utils import format_size
from ..utils.logging import LogStage, debug, info

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class FileInfo:
    """文件信息"""
    path: Path  # 绝对路径
    relative_path: str  # 相对于根目录的路径（正斜杠）
    size: int  # 文件大小（字节）
    mtime: float  # 修改时间（时间戳）
    digest: Optional[str] = None  # sha256，按需计算

    def to_dict(self) -> Dict[str, object]:
        """转换为字典格式"""
        data = {
            'path': self.relative_path,
            'size': self.size,
            'mtime': self.mtime,
        }
        if self.digest is not None:
            data['digest'] = self.digest
        return data


def compile_patterns(patterns: Optional[Iterable[str]]) -> Optional[List[Pattern[str]]]:
    """编译正则规则列表

    None 或空列表都表示"没有规则"，返回 None。

    Raises:
        InvalidPatternError: 任一规则格式错误
    """
    if not patterns:
        return None

    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise InvalidPatternError(pattern, str(e)) from e
    return compiled


class FileSetSpec:
    """包含/排除规则

    路径被保留当且仅当：
    (没有包含规则 或 至少匹配一条包含规则) 且 (没有排除规则 或 不匹配任何排除规则)。
    匹配使用整串匹配（re.fullmatch），不是子串搜索。
    """

    def __init__(self, include: Optional[Iterable[str]] = None, exclude: Optional[Iterable[str]] = None):
        self.include = list(include) if include else None
        self.exclude = list(exclude) if exclude else None
        self._include = compile_patterns(self.include)
        self._exclude = compile_patterns(self.exclude)

    @property
    def is_empty(self) -> bool:
        return self._include is None and self._exclude is None

    def matches(self, relative_path: str) -> bool:
        """检查单个相对路径是否被保留"""
        if self._include is not None and not any(p.fullmatch(relative_path) for p in self._include):
            return False
        if self._exclude is not None and any(p.fullmatch(relative_path) for p in self._exclude):
            return False
        return True

    def apply(self, paths: Iterable[str]) -> List[str]:
        """过滤路径序列，保持原有顺序"""
        return [p for p in paths if self.matches(p)]

    def __repr__(self) -> str:
        return f"FileSetSpec(include={self.include!r}, exclude={self.exclude!r})"


class FolderSnapshot(Mapping):
    """目录快照：相对路径 -> FileInfo 的只读有序映射"""

    def __init__(self, root: Path, files: Iterable[FileInfo]):
        self._root = root
        self._files: Dict[str, FileInfo] = {}
        for file_info in files:
            self._files[file_info.relative_path] = file_info
        self._total_size = sum(f.size for f in self._files.values())

    @property
    def root(self) -> Path:
        return self._root

    @property
    def total_size(self) -> int:
        return self._total_size

    @property
    def paths(self) -> List[str]:
        return list(self._files)

    def files(self) -> List[FileInfo]:
        return list(self._files.values())

    def __getitem__(self, relative_path: str) -> FileInfo:
        return self._files[relative_path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"FolderSnapshot(root={str(self._root)!r}, files={len(self._files)})"


def compute_file_digest(path: Path) -> str:
    """计算文件 sha256"""
    hasher = hashlib.sha256()
    with open(path, 'rb') as f:
        while True:
            chunk = f.read(_CHUNK_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


class FileCollector:
    """文件收集器

    负责扫描目录、应用包含/排除规则并生成快照。
    """

    def __init__(self, compute_digest: bool = True):
        self.compute_digest = compute_digest

    def collect(
        self,
        root: Union[str, Path],
        spec: Optional[FileSetSpec] = None,
    ) -> FolderSnapshot:
        """收集目录中的文件

        Args:
            root: 要扫描的根目录
            spec: 包含/排除规则，None 表示全部包含

        Returns:
            FolderSnapshot: 目录快照

        Raises:
            NotFoundError: 根目录不存在
        """
        spec = spec or FileSetSpec()
        root = Path(root)

        if not root.is_dir():
            raise NotFoundError(f"输入目录不存在: {root}", root)

        root = root.resolve()
        info(f"扫描目录: {root}", stage=LogStage.SCAN)

        files = []
        skipped = 0
        for relative_path, file_path in self._walk_directory(root, ""):
            if not spec.matches(relative_path):
                skipped += 1
                continue
            files.append(self._create_file_info(file_path, relative_path))

        snapshot = FolderSnapshot(root, files)
        info(f"  文件数量: {len(snapshot)}，总大小: {format_size(snapshot.total_size)}", stage=LogStage.SCAN)
        if skipped:
            debug(f"  规则过滤掉 {skipped} 个文件", stage=LogStage.SCAN)
        return snapshot

    def _walk_directory(self, directory: Path, prefix: str) -> Iterator[tuple]:
        """深度优先遍历，每层按名称排序

        Yields:
            (相对路径, 绝对路径)
        """
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            if entry.is_symlink():
                continue
            relative_path = f"{prefix}{entry.name}"
            if entry.is_dir(follow_symlinks=False):
                yield from self._walk_directory(Path(entry.path), relative_path + "/")
            elif entry.is_file(follow_symlinks=False):
                yield relative_path, Path(entry.path)

    def _create_file_info(self, file_path: Path, relative_path: str) -> FileInfo:
        stat = file_path.stat()
        return FileInfo(
            path=file_path,
            relative_path=relative_path,
            size=stat.st_size,
            mtime=stat.st_mtime,
            digest=compute_file_digest(file_path) if self.compute_digest else None,
        )


def collect_files(
    root: Union[str, Path],
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    compute_digest: bool = True,
) -> FolderSnapshot:
    """便捷函数：扫描目录并按规则过滤

    规则先于遍历编译，格式错误的规则会在访问文件系统之前抛出。
    """
    spec = FileSetSpec(include, exclude)
    return FileCollector(compute_digest=compute_digest).collect(root, spec)


def filter_paths(paths: Iterable[str], include: Optional[Sequence[str]] = None,
                 exclude: Optional[Sequence[str]] = None) -> List[str]:
    """便捷函数：对已有路径序列应用规则"""
    return FileSetSpec(include, exclude).apply(paths)
