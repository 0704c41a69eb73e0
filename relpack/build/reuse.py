"""
已有包复用

根据文件名中编码的包名、版本以及归档扩展名判断已有包能否满足本次请求，
从而跳过重新压缩。

注意：这里只信任文件名，不校验内容。调用方负责保证列表中的包可信；
如果需要按内容哈希校验，应由调用方在传入列表前完成。
"""

import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..errors import ReuseMismatchError
from ..utils.logging import reuse_logger
from ..utils.paths import remove_path, replace_path, temp_sibling
from .archivers import archive_extension, known_extensions
from .models import PackageDescriptor, PackageKind

_FULL_PATTERN = re.compile(r'^(?P<name>.+)_(?P<version>[^_]+)_full$')
_DELTA_PATTERN = re.compile(r'^(?P<name>.+)_(?P<from_version>[^_]+)_to_(?P<version>[^_]+)_delta$')


@dataclass(frozen=True)
class ExistingPackageRecord:
    """已有包记录"""
    path: Path
    name: str
    version: str
    kind: PackageKind
    from_version: Optional[str] = None
    extension: str = ""  # 小写的归档扩展名，目录形式的包为空

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> 'ExistingPackageRecord':
        """按命名规则解析已有包路径

        Raises:
            ReuseMismatchError: 文件不存在或文件名不符合命名规则
        """
        path = Path(path)
        if not path.exists():
            raise ReuseMismatchError(f"已有包不存在: {path}")

        if path.is_dir():
            stem, extension = path.name, ""
        else:
            stem, extension = split_package_extension(path.name)
            if not extension:
                raise ReuseMismatchError(f"已有包没有可识别的归档扩展名: {path.name}")

        match = _DELTA_PATTERN.match(stem)
        if match:
            return cls(
                path=path,
                name=match.group('name'),
                version=match.group('version'),
                kind=PackageKind.DELTA,
                from_version=match.group('from_version'),
                extension=extension,
            )

        match = _FULL_PATTERN.match(stem)
        if match:
            return cls(
                path=path,
                name=match.group('name'),
                version=match.group('version'),
                kind=PackageKind.FULL,
                extension=extension,
            )

        raise ReuseMismatchError(f"无法从文件名解析包信息: {path.name}")

    def satisfies(self, descriptor: PackageDescriptor) -> bool:
        """记录能否满足描述符

        包名和归档格式（扩展名）必须与描述符一致；
        完整包：版本相同且类型为完整包。
        增量包：类型为增量包且起始、目标版本都相同。
        """
        if self.name != descriptor.name or self.extension != archive_extension(descriptor.archiver):
            return False
        if self.kind != descriptor.kind or self.version != descriptor.version:
            return False
        if self.kind == PackageKind.DELTA:
            return self.from_version == descriptor.from_version
        return True


def split_package_extension(file_name: str) -> Tuple[str, str]:
    """拆分出已知的归档扩展名

    Returns:
        (文件名主体, 小写扩展名)，没有已知扩展名时扩展名为空
    """
    lowered = file_name.lower()
    for extension in known_extensions():
        if lowered.endswith(extension):
            return file_name[:-len(extension)], extension
    return file_name, ""


def load_existing_records(paths: Iterable[Union[str, Path]]) -> List[ExistingPackageRecord]:
    """解析已有包列表

    无法解析的条目记录警告后跳过，不会中断构建。
    """
    records = []
    for path in paths:
        try:
            records.append(ExistingPackageRecord.from_path(path))
        except ReuseMismatchError as e:
            reuse_logger.warning(f"跳过已有包: {e}")
    return records


def find_reusable(records: Iterable[ExistingPackageRecord],
                  descriptor: PackageDescriptor) -> Optional[ExistingPackageRecord]:
    """查找第一个能满足描述符的记录"""
    for record in records:
        if record.satisfies(descriptor):
            return record
    return None


class ReuseLedger:
    """复用登记簿

    记录集合在构建期间只读；登记簿只在规划阶段由单个线程使用。
    默认每条记录最多被复用一次。
    """

    def __init__(self, records: Iterable[ExistingPackageRecord], allow_multiple: bool = False):
        self.records = list(records)
        self.allow_multiple = allow_multiple
        self._claims: Dict[Path, int] = {}

    def claim(self, descriptor: PackageDescriptor) -> Optional[ExistingPackageRecord]:
        """为描述符认领一条可复用的记录"""
        available = (r for r in self.records if self.allow_multiple or r.path not in self._claims)
        record = find_reusable(available, descriptor)
        if record is not None:
            self._claims[record.path] = self._claims.get(record.path, 0) + 1
            reuse_logger.info(f"复用已有包: {record.path.name} -> {descriptor.file_name}")
        return record

    def claim_count(self, record: ExistingPackageRecord) -> int:
        return self._claims.get(record.path, 0)


def materialize_reuse(record: ExistingPackageRecord, target: Path) -> Path:
    """将已有包复制到目标输出路径

    目标与记录是同一文件时不做任何操作。复制同样先写临时文件再原子重命名。
    """
    target = Path(target)
    if target.exists() and record.path.resolve() == target.resolve():
        return target

    is_directory = record.path.is_dir()
    temp_path = temp_sibling(target, directory=is_directory)
    try:
        if is_directory:
            shutil.rmtree(temp_path)
            shutil.copytree(record.path, temp_path)
        else:
            shutil.copy2(record.path, temp_path)
        replace_path(temp_path, target)
    except OSError:
        remove_path(temp_path)
        raise
    return target
