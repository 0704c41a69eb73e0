"""
构建数据模型

定义包描述符、命名规则以及构建清单。
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..config.schema import ArchiverSettings


class PackageKind(str, Enum):
    """包类型"""
    FULL = "full"
    DELTA = "delta"


class BuildOutcome(str, Enum):
    """单个包的构建结果"""
    BUILT = "built"
    SKIPPED = "skipped"  # 复用已有包
    FAILED = "failed"


def package_stem(name: str, version: str, kind: PackageKind, from_version: Optional[str] = None) -> str:
    """生成包文件名主体（不含扩展名）

    完整包: {name}_{version}_full
    增量包: {name}_{from}_to_{version}_delta
    """
    if kind == PackageKind.DELTA:
        if not from_version:
            raise ValueError("增量包必须指定起始版本")
        return f"{name}_{from_version}_to_{version}_delta"
    return f"{name}_{version}_full"


@dataclass(frozen=True)
class PackageDescriptor:
    """待生成的单个包"""
    name: str
    version: str
    kind: PackageKind
    output_path: Path
    archiver: ArchiverSettings
    from_version: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.output_path.name

    @property
    def label(self) -> str:
        """用于日志的简短描述"""
        if self.kind == PackageKind.DELTA:
            return f"delta {self.from_version} -> {self.version}"
        return f"full {self.version}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'version': self.version,
            'kind': self.kind.value,
            'from_version': self.from_version,
            'file_name': self.file_name,
            'archiver': self.archiver.kind,
        }


@dataclass
class ManifestEntry:
    """清单条目"""
    descriptor: PackageDescriptor
    outcome: BuildOutcome
    output_path: Optional[Path] = None
    reused_from: Optional[Path] = None
    error: Optional[str] = None
    file_count: int = 0
    size: int = 0  # 归档后的字节数

    @property
    def succeeded(self) -> bool:
        return self.outcome != BuildOutcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = self.descriptor.to_dict()
        data['outcome'] = self.outcome.value
        data['output_path'] = str(self.output_path) if self.output_path else None
        data['file_count'] = self.file_count
        data['size'] = self.size
        if self.reused_from is not None:
            data['reused_from'] = str(self.reused_from)
        if self.error is not None:
            data['error'] = self.error
        return data


@dataclass
class BuildManifest:
    """一次构建调用的产出记录

    条目顺序与请求的描述符顺序一致，与任务完成顺序无关。
    """
    entries: List[ManifestEntry] = field(default_factory=list)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def built(self) -> List[ManifestEntry]:
        return [e for e in self.entries if e.outcome == BuildOutcome.BUILT]

    @property
    def skipped(self) -> List[ManifestEntry]:
        return [e for e in self.entries if e.outcome == BuildOutcome.SKIPPED]

    @property
    def failed(self) -> List[ManifestEntry]:
        return [e for e in self.entries if e.outcome == BuildOutcome.FAILED]

    @property
    def succeeded(self) -> bool:
        return all(e.succeeded for e in self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'succeeded': self.succeeded,
            'packages': [e.to_dict() for e in self.entries],
        }
