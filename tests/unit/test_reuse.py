"""
已有包复用单元测试

测试文件名解析、匹配规则以及复用登记。
"""

from pathlib import Path

import pytest

from relpack.build.models import PackageDescriptor, PackageKind
from relpack.build.reuse import (
    ExistingPackageRecord,
    ReuseLedger,
    find_reusable,
    load_existing_records,
    materialize_reuse,
    split_package_extension,
)
from relpack.config.schema import FolderArchiverModel, ZipArchiverModel, ZstdArchiverModel
from relpack.errors import ReuseMismatchError


def _touch(path: Path, content: bytes = b"pkg") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _descriptor(tmp_path, version, kind=PackageKind.FULL, from_version=None):
    if kind == PackageKind.DELTA:
        name = f"app_{from_version}_to_{version}_delta.zip"
    else:
        name = f"app_{version}_full.zip"
    return PackageDescriptor(
        name="app",
        version=version,
        kind=kind,
        output_path=tmp_path / "out" / name,
        archiver=ZipArchiverModel(),
        from_version=from_version,
    )


class TestStripPackageExtension:
    """扩展名处理测试"""

    @pytest.mark.parametrize("file_name,stem,extension", [
        ("app_1.0.0_full.zip", "app_1.0.0_full", ".zip"),
        ("app_1.0.0_full.tar.gz", "app_1.0.0_full", ".tar.gz"),
        ("app_1.0.0_full.TAR.ZST", "app_1.0.0_full", ".tar.zst"),
        ("app_1.0.0_full.nupkg", "app_1.0.0_full", ".nupkg"),
        ("app_1.0.0_full", "app_1.0.0_full", ""),
    ])
    def test_split(self, file_name, stem, extension):
        """测试拆分已知扩展名"""
        assert split_package_extension(file_name) == (stem, extension)


class TestExistingPackageRecord:
    """ExistingPackageRecord 测试"""

    def test_parse_full(self, tmp_path):
        """测试解析完整包文件名"""
        record = ExistingPackageRecord.from_path(_touch(tmp_path / "app_1.0.0_full.zip"))

        assert record.name == "app"
        assert record.version == "1.0.0"
        assert record.kind == PackageKind.FULL
        assert record.from_version is None

    def test_parse_delta(self, tmp_path):
        """测试解析增量包文件名"""
        record = ExistingPackageRecord.from_path(_touch(tmp_path / "app_1.0.0_to_1.1.0_delta.tar.gz"))

        assert record.kind == PackageKind.DELTA
        assert record.from_version == "1.0.0"
        assert record.version == "1.1.0"

    def test_name_with_underscore(self, tmp_path):
        """测试包名本身含下划线"""
        record = ExistingPackageRecord.from_path(_touch(tmp_path / "my_app_2.0_full.zip"))

        assert record.name == "my_app"
        assert record.version == "2.0"

    def test_parse_folder_package(self, tmp_path):
        """测试目录形式的复制包"""
        folder = tmp_path / "app_1.0.0_full"
        folder.mkdir()

        record = ExistingPackageRecord.from_path(folder)

        assert record.version == "1.0.0"

    def test_unparseable_name(self, tmp_path):
        """测试无法解析的文件名"""
        with pytest.raises(ReuseMismatchError):
            ExistingPackageRecord.from_path(_touch(tmp_path / "random.zip"))

    def test_missing_file(self, tmp_path):
        """测试文件不存在"""
        with pytest.raises(ReuseMismatchError):
            ExistingPackageRecord.from_path(tmp_path / "app_1.0.0_full.zip")

    def test_satisfies(self, tmp_path):
        """测试匹配规则"""
        full = ExistingPackageRecord.from_path(_touch(tmp_path / "app_1.0.0_full.zip"))
        delta = ExistingPackageRecord.from_path(_touch(tmp_path / "app_0.9.0_to_1.0.0_delta.zip"))

        assert full.satisfies(_descriptor(tmp_path, "1.0.0"))
        assert not full.satisfies(_descriptor(tmp_path, "1.1.0"))
        assert not full.satisfies(_descriptor(tmp_path, "1.0.0", PackageKind.DELTA, "0.9.0"))
        assert delta.satisfies(_descriptor(tmp_path, "1.0.0", PackageKind.DELTA, "0.9.0"))
        assert not delta.satisfies(_descriptor(tmp_path, "1.0.0", PackageKind.DELTA, "0.8.0"))

    def test_satisfies_requires_same_name(self, tmp_path):
        """测试包名不同的记录不匹配"""
        other = ExistingPackageRecord.from_path(_touch(tmp_path / "other_1.0.0_full.zip"))

        assert not other.satisfies(_descriptor(tmp_path, "1.0.0"))

    def test_satisfies_requires_same_extension(self, tmp_path):
        """测试归档格式不同的记录不匹配"""
        record = ExistingPackageRecord.from_path(_touch(tmp_path / "app_1.0.0_full.zip"))
        descriptor = PackageDescriptor(
            name="app",
            version="1.0.0",
            kind=PackageKind.FULL,
            output_path=tmp_path / "out" / "app_1.0.0_full.tar.zst",
            archiver=ZstdArchiverModel(),
        )

        assert record.extension == ".zip"
        assert not record.satisfies(descriptor)

    def test_folder_record_matches_folder_descriptor(self, tmp_path):
        """测试目录形式的包只匹配目录输出"""
        folder = tmp_path / "app_1.0.0_full"
        folder.mkdir()
        record = ExistingPackageRecord.from_path(folder)
        descriptor = PackageDescriptor(
            name="app",
            version="1.0.0",
            kind=PackageKind.FULL,
            output_path=tmp_path / "out" / "app_1.0.0_full",
            archiver=FolderArchiverModel(),
        )

        assert record.satisfies(descriptor)
        assert not record.satisfies(_descriptor(tmp_path, "1.0.0"))

    def test_file_without_known_extension(self, tmp_path):
        """测试没有可识别扩展名的文件被拒绝"""
        with pytest.raises(ReuseMismatchError):
            ExistingPackageRecord.from_path(_touch(tmp_path / "app_1.0.0_full"))


class TestLoadExistingRecords:
    """已有包列表加载测试"""

    def test_invalid_entries_skipped(self, tmp_path):
        """测试无效条目被跳过"""
        good = _touch(tmp_path / "app_1.0.0_full.zip")
        bad = _touch(tmp_path / "notes.txt")

        records = load_existing_records([good, bad, tmp_path / "missing_1.0_full.zip"])

        assert [r.path for r in records] == [good]


class TestReuseLedger:
    """ReuseLedger 测试"""

    def test_claim_once_by_default(self, tmp_path):
        """测试默认每条记录只能复用一次"""
        records = load_existing_records([_touch(tmp_path / "app_1.0.0_full.zip")])
        ledger = ReuseLedger(records)
        descriptor = _descriptor(tmp_path, "1.0.0")

        first = ledger.claim(descriptor)
        second = ledger.claim(descriptor)

        assert first is records[0]
        assert second is None
        assert ledger.claim_count(records[0]) == 1

    def test_claim_multiple_when_allowed(self, tmp_path):
        """测试允许多次复用"""
        records = load_existing_records([_touch(tmp_path / "app_1.0.0_full.zip")])
        ledger = ReuseLedger(records, allow_multiple=True)
        descriptor = _descriptor(tmp_path, "1.0.0")

        assert ledger.claim(descriptor) is not None
        assert ledger.claim(descriptor) is not None
        assert ledger.claim_count(records[0]) == 2

    def test_no_match(self, tmp_path):
        """测试没有匹配记录"""
        records = load_existing_records([_touch(tmp_path / "app_1.0.0_full.zip")])
        assert find_reusable(records, _descriptor(tmp_path, "2.0.0")) is None


class TestMaterializeReuse:
    """复用结果落盘测试"""

    def test_copy_file(self, tmp_path):
        """测试复制文件到目标路径"""
        record = ExistingPackageRecord.from_path(_touch(tmp_path / "old" / "app_1.0.0_full.zip", b"data"))
        target = tmp_path / "out" / "app_1.0.0_full.zip"

        materialize_reuse(record, target)

        assert target.read_bytes() == b"data"
        assert sorted(p.name for p in target.parent.iterdir()) == ["app_1.0.0_full.zip"]

    def test_same_path_is_noop(self, tmp_path):
        """测试目标就是已有包本身"""
        path = _touch(tmp_path / "app_1.0.0_full.zip", b"data")
        record = ExistingPackageRecord.from_path(path)

        materialize_reuse(record, path)

        assert path.read_bytes() == b"data"

    def test_copy_directory(self, tmp_path):
        """测试复制目录形式的包"""
        folder = tmp_path / "old" / "app_1.0.0_full"
        _touch(folder / "sub" / "a.txt", b"a")
        record = ExistingPackageRecord.from_path(folder)
        target = tmp_path / "out" / "app_1.0.0_full"

        materialize_reuse(record, target)

        assert (target / "sub" / "a.txt").read_bytes() == b"a"
