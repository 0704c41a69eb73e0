"""
差异计算单元测试

测试新增、修改、删除的判定以及签名策略。
"""

from pathlib import Path

import pytest

from relpack.build.collector import FileInfo, collect_files
from relpack.build.differ import (
    ChangeKind,
    DeltaSummary,
    PackageDiffer,
    diff_snapshots,
    group_by_kind,
    same_content,
)
from relpack.config.schema import SignaturePolicy


def _info(path: str, size: int = 1, mtime: float = 0.0, digest=None) -> FileInfo:
    return FileInfo(Path("/root") / path, path, size, mtime, digest)


class TestSameContent:
    """内容比较测试"""

    def test_size_difference(self):
        """测试大小不同"""
        assert not same_content(_info("a", 1, digest="x"), _info("a", 2, digest="x"))

    def test_digest_comparison(self):
        """测试摘要比较忽略修改时间"""
        old = _info("a", 3, mtime=1.0, digest="abc")
        new = _info("a", 3, mtime=2.0, digest="abc")
        assert same_content(old, new, SignaturePolicy.SIZE_HASH)

    def test_digest_change_same_size(self):
        """测试大小相同但内容不同"""
        old = _info("a", 3, digest="abc")
        new = _info("a", 3, digest="def")
        assert not same_content(old, new, SignaturePolicy.SIZE_HASH)

    def test_mtime_policy(self):
        """测试大小+修改时间策略"""
        old = _info("a", 3, mtime=1.0, digest="abc")
        new = _info("a", 3, mtime=2.0, digest="abc")
        assert not same_content(old, new, SignaturePolicy.SIZE_MTIME)

    def test_missing_digest_falls_back_to_mtime(self):
        """测试缺少摘要时退回修改时间"""
        assert same_content(_info("a", 3, mtime=5.0), _info("a", 3, mtime=5.0))


class TestPackageDiffer:
    """PackageDiffer 测试"""

    def test_classifies_changes(self):
        """测试分类：新增、修改、删除"""
        old = {
            "a.txt": _info("a.txt", digest="1"),
            "b.txt": _info("b.txt", digest="2"),
            "c.txt": _info("c.txt", digest="3"),
        }
        new = {
            "a.txt": _info("a.txt", digest="1"),
            "b.txt": _info("b.txt", digest="changed"),
            "d.txt": _info("d.txt", digest="4"),
        }

        entries = PackageDiffer().diff(old, new)

        assert [(e.relative_path, e.kind) for e in entries] == [
            ("b.txt", ChangeKind.MODIFIED),
            ("c.txt", ChangeKind.REMOVED),
            ("d.txt", ChangeKind.ADDED),
        ]

    def test_unchanged_files_absent(self):
        """测试未变化的文件不出现在结果中"""
        files = {"a.txt": _info("a.txt", digest="1")}
        assert PackageDiffer().diff(files, dict(files)) == []

    def test_payload_only_for_added_and_modified(self):
        """测试只有新增和修改携带源文件"""
        old = {"gone": _info("gone"), "same": _info("same", size=1, digest="a")}
        new = {"same": _info("same", size=2, digest="b"), "new": _info("new")}

        entries = {e.relative_path: e for e in PackageDiffer().diff(old, new)}

        assert not entries["gone"].has_payload
        assert entries["gone"].source is None
        assert entries["same"].has_payload
        assert entries["new"].source.relative_path == "new"

    def test_result_sorted_by_path(self):
        """测试结果按路径排序，与输入顺序无关"""
        new = {p: _info(p) for p in ["z", "m", "a"]}
        entries = PackageDiffer().diff({}, new)
        assert [e.relative_path for e in entries] == ["a", "m", "z"]

    def test_diff_real_folders(self, tmp_path):
        """测试真实目录的差异"""
        old_root = tmp_path / "v1"
        new_root = tmp_path / "v2"
        for root in (old_root, new_root):
            root.mkdir()
            (root / "a.txt").write_text("same")
        (old_root / "b.txt").write_text("old")
        (new_root / "b.txt").write_text("new")
        (old_root / "removed.txt").write_text("bye")
        (new_root / "added.txt").write_text("hi")

        entries = diff_snapshots(collect_files(old_root), collect_files(new_root))

        grouped = group_by_kind(entries)
        assert grouped[ChangeKind.ADDED] == ["added.txt"]
        assert grouped[ChangeKind.MODIFIED] == ["b.txt"]
        assert grouped[ChangeKind.REMOVED] == ["removed.txt"]


class TestDeltaSummary:
    """DeltaSummary 测试"""

    def test_counts(self):
        """测试统计"""
        old = {"a": _info("a"), "b": _info("b", digest="1")}
        new = {"b": _info("b", digest="2"), "c": _info("c")}

        summary = DeltaSummary.from_entries(PackageDiffer().diff(old, new))

        assert (summary.added, summary.modified, summary.removed) == (1, 1, 1)
        assert summary.total == 3
