"""
包差异计算

比较两个版本的目录快照，将每个相对路径归类为新增、修改或删除。
未变化的文件不会出现在结果中。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional

from ..config.schema import SignaturePolicy
from ..utils.logging import LogStage, info
from .collector import FileInfo


class ChangeKind(str, Enum):
    """变更类型"""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class DeltaEntry:
    """增量条目

    新增/修改条目的 source 指向新快照中的文件；删除条目没有 source。
    """
    relative_path: str
    kind: ChangeKind
    source: Optional[FileInfo] = None

    @property
    def has_payload(self) -> bool:
        return self.kind != ChangeKind.REMOVED


@dataclass
class DeltaSummary:
    """增量统计"""
    added: int = 0
    modified: int = 0
    removed: int = 0

    @property
    def total(self) -> int:
        return self.added + self.modified + self.removed

    @classmethod
    def from_entries(cls, entries: List[DeltaEntry]) -> 'DeltaSummary':
        summary = cls()
        for entry in entries:
            if entry.kind == ChangeKind.ADDED:
                summary.added += 1
            elif entry.kind == ChangeKind.MODIFIED:
                summary.modified += 1
            else:
                summary.removed += 1
        return summary


def same_content(old: FileInfo, new: FileInfo, policy: SignaturePolicy = SignaturePolicy.SIZE_HASH) -> bool:
    """按签名策略判断两个文件内容是否相同

    SIZE_HASH 策略下，任一侧缺少摘要时退回到大小+修改时间比较。
    """
    if old.size != new.size:
        return False
    if policy == SignaturePolicy.SIZE_HASH and old.digest is not None and new.digest is not None:
        return old.digest == new.digest
    return old.mtime == new.mtime


class PackageDiffer:
    """快照差异计算器"""

    def __init__(self, policy: SignaturePolicy = SignaturePolicy.SIZE_HASH):
        self.policy = policy

    def diff(self, old: Mapping[str, FileInfo], new: Mapping[str, FileInfo]) -> List[DeltaEntry]:
        """计算两个快照之间的增量

        比较在两个完整快照上进行，结果按相对路径排序，与遍历顺序无关。

        Args:
            old: 旧版本快照
            new: 新版本快照

        Returns:
            List[DeltaEntry]: 按相对路径排序的增量条目
        """
        entries: List[DeltaEntry] = []

        for relative_path in sorted(set(old) | set(new)):
            old_file = old.get(relative_path)
            new_file = new.get(relative_path)

            if old_file is None:
                entries.append(DeltaEntry(relative_path, ChangeKind.ADDED, new_file))
            elif new_file is None:
                entries.append(DeltaEntry(relative_path, ChangeKind.REMOVED))
            elif not same_content(old_file, new_file, self.policy):
                entries.append(DeltaEntry(relative_path, ChangeKind.MODIFIED, new_file))

        summary = DeltaSummary.from_entries(entries)
        info(
            f"差异计算完成: 新增 {summary.added}，修改 {summary.modified}，删除 {summary.removed}",
            stage=LogStage.DIFF,
        )
        return entries


def diff_snapshots(
    old: Mapping[str, FileInfo],
    new: Mapping[str, FileInfo],
    policy: SignaturePolicy = SignaturePolicy.SIZE_HASH,
) -> List[DeltaEntry]:
    """便捷函数：计算快照差异"""
    return PackageDiffer(policy).diff(old, new)


def group_by_kind(entries: List[DeltaEntry]) -> Dict[ChangeKind, List[str]]:
    """按变更类型分组相对路径"""
    grouped: Dict[ChangeKind, List[str]] = {kind: [] for kind in ChangeKind}
    for entry in entries:
        grouped[entry.kind].append(entry.relative_path)
    return grouped
