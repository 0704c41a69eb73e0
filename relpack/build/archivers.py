"""
归档器抽象接口和实现

提供统一的 archive(entries, destination, progress) 接口，后端包括
Zip、通用 tar 系列、Zstd 高压缩比、NuGet 包以及目录复制。

所有后端：
- 原样保留包内相对路径；
- 每个文件以及大文件每 1 MiB 报告一次 [0, 1] 进度；
- 不共享任何可变的全局状态，每个任务使用独立实例；
- 先写入目标旁的临时路径，成功后原子重命名，失败时删除临时文件并抛出 ArchiveWriteError。
"""

import io
import shutil
import tarfile
import time
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, BinaryIO, Callable, Dict, Iterable, List, Optional, Type
from xml.etree import ElementTree

import zstandard as zstd

from ..config.schema import (
    ArchiverKind,
    ArchiverSettings,
    FolderArchiverModel,
    NuGetArchiverModel,
    TarArchiverModel,
    TarFormat,
    ZipArchiverModel,
    ZstdArchiverModel,
)
from ..errors import ArchiveWriteError
from ..utils.paths import remove_path, replace_path, temp_sibling
from .collector import FileInfo

if TYPE_CHECKING:
    from .models import PackageDescriptor

_CHUNK_SIZE = 64 * 1024
_REPORT_EVERY = 1024 * 1024

# zip 头能表示的时间范围
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
_ZIP_MAX_DATE = (2107, 12, 31, 23, 59, 58)

# 进度回调：接收 [0, 1] 之间的值
ProgressSink = Callable[[float], None]


@dataclass(frozen=True)
class ArchiveEntry:
    """归档条目：磁盘文件或内存数据"""
    relative_path: str
    source: Optional[Path] = None
    data: Optional[bytes] = None
    size: int = 0
    mtime: float = 0.0

    @classmethod
    def from_file(cls, file_info: FileInfo) -> 'ArchiveEntry':
        return cls(
            relative_path=file_info.relative_path,
            source=file_info.path,
            size=file_info.size,
            mtime=file_info.mtime,
        )

    @classmethod
    def from_bytes(cls, relative_path: str, data: bytes) -> 'ArchiveEntry':
        return cls(relative_path=relative_path, data=data, size=len(data))

    def open(self) -> BinaryIO:
        if self.source is not None:
            return open(self.source, 'rb')
        return io.BytesIO(self.data or b"")


@dataclass
class ArchiveResult:
    """归档结果"""
    destination: Path
    file_count: int
    input_size: int
    output_size: int


class ProgressTracker:
    """将已写入的字节数换算成 [0, 1] 进度

    每个文件额外计 1 个单位，空文件也能推进进度。
    """

    def __init__(self, entries: List[ArchiveEntry], sink: Optional[ProgressSink] = None,
                 report_every: int = _REPORT_EVERY):
        self.sink = sink
        self.report_every = report_every
        self.total_units = sum(e.size for e in entries) + len(entries)
        self._done = 0
        self._since_report = 0

    def advance(self, nbytes: int) -> None:
        self._done += nbytes
        self._since_report += nbytes
        if self._since_report >= self.report_every:
            self._since_report = 0
            self._report()

    def file_done(self) -> None:
        self._done += 1
        self._since_report = 0
        self._report()

    def finish(self) -> None:
        if self.sink:
            self.sink(1.0)

    def _report(self) -> None:
        if self.sink and self.total_units > 0:
            self.sink(min(1.0, self._done / self.total_units))


class _ProgressReader:
    """包装只读流，读取时推进进度（供 tarfile 使用）"""

    def __init__(self, stream: BinaryIO, tracker: ProgressTracker):
        self._stream = stream
        self._tracker = tracker

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        self._tracker.advance(len(chunk))
        return chunk


def _copy_chunks(src: BinaryIO, dst: BinaryIO, tracker: ProgressTracker) -> None:
    while True:
        chunk = src.read(_CHUNK_SIZE)
        if not chunk:
            break
        dst.write(chunk)
        tracker.advance(len(chunk))


class PackageArchiver(ABC):
    """归档器抽象基类"""

    kind: ArchiverKind
    writes_directory = False

    def __init__(self, settings: ArchiverSettings):
        self.settings = settings

    @classmethod
    @abstractmethod
    def extension_for(cls, settings: ArchiverSettings) -> str:
        """获取输出文件扩展名"""
        pass

    @property
    def extension(self) -> str:
        return self.extension_for(self.settings)

    def archive(
        self,
        entries: Iterable[ArchiveEntry],
        destination: Path,
        progress: Optional[ProgressSink] = None,
        descriptor: Optional['PackageDescriptor'] = None,
    ) -> ArchiveResult:
        """写入归档

        Args:
            entries: 有序的归档条目
            destination: 最终输出路径
            progress: 进度回调
            descriptor: 当前包的描述符（部分后端写入元数据时使用）

        Returns:
            ArchiveResult: 归档结果

        Raises:
            ArchiveWriteError: 写入失败，目标路径不会留下残缺文件
        """
        destination = Path(destination)
        entries = list(entries)
        self._check_entries(entries)
        tracker = ProgressTracker(entries, progress)

        try:
            temp_path = temp_sibling(destination, directory=self.writes_directory)
        except OSError as e:
            raise ArchiveWriteError(f"无法创建临时文件 {destination}: {e}") from e

        try:
            self._write(entries, temp_path, tracker, descriptor)
            replace_path(temp_path, destination)
        except Exception as e:
            remove_path(temp_path)
            if isinstance(e, ArchiveWriteError):
                raise
            raise ArchiveWriteError(f"写入归档失败 {destination}: {e}") from e

        tracker.finish()
        return ArchiveResult(
            destination=destination,
            file_count=len(entries),
            input_size=sum(e.size for e in entries),
            output_size=self._output_size(destination),
        )

    @abstractmethod
    def _write(self, entries: List[ArchiveEntry], temp_path: Path, tracker: ProgressTracker,
               descriptor: Optional['PackageDescriptor']) -> None:
        """将条目写入临时路径"""
        pass

    def _output_size(self, destination: Path) -> int:
        return destination.stat().st_size

    def _check_entries(self, entries: List[ArchiveEntry]) -> None:
        """检查包内路径合法且唯一"""
        seen = set()
        for entry in entries:
            path = PurePosixPath(entry.relative_path)
            if not entry.relative_path or path.is_absolute() or '..' in path.parts:
                raise ArchiveWriteError(f"非法的包内路径: {entry.relative_path!r}")
            if entry.relative_path in seen:
                raise ArchiveWriteError(f"重复的包内路径: {entry.relative_path}")
            seen.add(entry.relative_path)


class ZipArchiver(PackageArchiver):
    """Zip 归档器"""

    kind = ArchiverKind.ZIP

    def __init__(self, settings: Optional[ZipArchiverModel] = None):
        super().__init__(settings or ZipArchiverModel())

    @classmethod
    def extension_for(cls, settings: ArchiverSettings) -> str:
        return ".zip"

    def _write(self, entries, temp_path, tracker, descriptor) -> None:
        with zipfile.ZipFile(temp_path, 'w', zipfile.ZIP_DEFLATED, compresslevel=self.settings.level) as zf:
            self._write_entries(zf, entries, tracker)

    @staticmethod
    def _write_entries(zf: zipfile.ZipFile, entries: List[ArchiveEntry], tracker: ProgressTracker) -> None:
        for entry in entries:
            zinfo = zip_entry_info(zf, entry.relative_path, entry.mtime)
            with entry.open() as src, zf.open(zinfo, 'w', force_zip64=True) as dst:
                _copy_chunks(src, dst, tracker)
            tracker.file_done()



def zip_entry_info(zf: zipfile.ZipFile, name: str, mtime: float = 0.0) -> zipfile.ZipInfo:
    """构造 zip 条目头

    时间戳取自源文件的修改时间而非当前时间，同样的输入得到同样的包；
    早于 1980 年（包括内存数据）的时间记为 zip 能表示的最早时间。
    """
    date_time = time.localtime(mtime)[:6]
    if date_time[0] < 1980:
        date_time = _ZIP_EPOCH
    elif date_time[0] > 2107:
        date_time = _ZIP_MAX_DATE

    zinfo = zipfile.ZipInfo(name, date_time=date_time)
    zinfo.compress_type = zf.compression
    zinfo._compresslevel = zf.compresslevel  # ZipFile.open 只为字符串名称设置压缩级别
    zinfo.external_attr = 0o644 << 16
    return zinfo

class TarArchiver(PackageArchiver):
    """通用 tar 系列归档器"""

    kind = ArchiverKind.ARCHIVE

    _EXTENSIONS = {
        TarFormat.TAR: ".tar",
        TarFormat.GZTAR: ".tar.gz",
        TarFormat.BZTAR: ".tar.bz2",
        TarFormat.XZTAR: ".tar.xz",
    }

    def __init__(self, settings: Optional[TarArchiverModel] = None):
        super().__init__(settings or TarArchiverModel())

    @classmethod
    def extension_for(cls, settings: ArchiverSettings) -> str:
        return cls._EXTENSIONS[settings.format]

    def _open(self, temp_path: Path) -> tarfile.TarFile:
        fmt = self.settings.format
        level = self.settings.level
        if fmt == TarFormat.GZTAR:
            return tarfile.open(temp_path, 'w:gz', compresslevel=level)
        if fmt == TarFormat.BZTAR:
            return tarfile.open(temp_path, 'w:bz2', compresslevel=level)
        if fmt == TarFormat.XZTAR:
            return tarfile.open(temp_path, 'w:xz', preset=level)
        return tarfile.open(temp_path, 'w')

    def _write(self, entries, temp_path, tracker, descriptor) -> None:
        with self._open(temp_path) as tar:
            write_tar_entries(tar, entries, tracker)


def write_tar_entries(tar: tarfile.TarFile, entries: List[ArchiveEntry], tracker: ProgressTracker) -> None:
    """将条目写入已打开的 tar 流"""
    for entry in entries:
        tarinfo = tarfile.TarInfo(name=entry.relative_path)
        tarinfo.size = entry.size
        tarinfo.mtime = int(entry.mtime)
        tarinfo.mode = 0o644
        with entry.open() as src:
            tar.addfile(tarinfo, fileobj=_ProgressReader(src, tracker))
        tracker.file_done()


class ZstdArchiver(PackageArchiver):
    """Zstd 高压缩比归档器（zstd 压缩的 tar 流）"""

    kind = ArchiverKind.ZSTD

    def __init__(self, settings: Optional[ZstdArchiverModel] = None):
        super().__init__(settings or ZstdArchiverModel())

    @classmethod
    def extension_for(cls, settings: ArchiverSettings) -> str:
        return ".tar.zst"

    def _write(self, entries, temp_path, tracker, descriptor) -> None:
        cctx = zstd.ZstdCompressor(level=self.settings.level, threads=self.settings.threads)
        with open(temp_path, 'wb') as raw:
            with cctx.stream_writer(raw, closefd=False) as writer:
                with tarfile.open(fileobj=writer, mode='w|') as tar:
                    write_tar_entries(tar, entries, tracker)


class NuGetArchiver(PackageArchiver):
    """NuGet 包归档器

    生成 .nupkg（zip 容器），包含 .nuspec 元数据与 [Content_Types].xml，
    包文件保持原有相对路径。
    """

    kind = ArchiverKind.NUGET

    CONTENT_TYPES_NAME = "[Content_Types].xml"
    NUSPEC_NAMESPACE = "http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd"
    CONTENT_TYPES_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/content-types"

    def __init__(self, settings: Optional[NuGetArchiverModel] = None):
        super().__init__(settings or NuGetArchiverModel())

    @classmethod
    def extension_for(cls, settings: ArchiverSettings) -> str:
        return ".nupkg"

    def _write(self, entries, temp_path, tracker, descriptor) -> None:
        package_id = descriptor.name if descriptor else "package"
        version = descriptor.version if descriptor else "1.0.0"
        nuspec_name = f"{package_id}.nuspec"

        reserved = {nuspec_name.lower(), self.CONTENT_TYPES_NAME.lower()}
        for entry in entries:
            if entry.relative_path.lower() in reserved:
                raise ArchiveWriteError(f"包内路径与 NuGet 元数据冲突: {entry.relative_path}")

        with zipfile.ZipFile(temp_path, 'w', zipfile.ZIP_DEFLATED, compresslevel=self.settings.level) as zf:
            zf.writestr(zip_entry_info(zf, nuspec_name), self.build_nuspec(package_id, version, descriptor))
            ZipArchiver._write_entries(zf, entries, tracker)
            zf.writestr(zip_entry_info(zf, self.CONTENT_TYPES_NAME), self.build_content_types(entries))

    def build_nuspec(self, package_id: str, version: str,
                     descriptor: Optional['PackageDescriptor'] = None) -> bytes:
        """生成 .nuspec 文档"""
        description = self.settings.description
        if not description:
            description = descriptor.label if descriptor else package_id

        package = ElementTree.Element("package", xmlns=self.NUSPEC_NAMESPACE)
        metadata = ElementTree.SubElement(package, "metadata")
        for tag, text in (
            ("id", package_id),
            ("version", version),
            ("authors", self.settings.authors),
            ("description", description),
        ):
            ElementTree.SubElement(metadata, tag).text = text
        return ElementTree.tostring(package, encoding="utf-8", xml_declaration=True)

    def build_content_types(self, entries: List[ArchiveEntry]) -> bytes:
        """生成 [Content_Types].xml，按扩展名声明默认类型"""
        types = ElementTree.Element("Types", xmlns=self.CONTENT_TYPES_NAMESPACE)
        extensions = {"nuspec"}
        overrides = []
        for entry in entries:
            suffix = PurePosixPath(entry.relative_path).suffix
            if suffix:
                extensions.add(suffix[1:].lower())
            else:
                overrides.append(entry.relative_path)

        for extension in sorted(extensions):
            ElementTree.SubElement(types, "Default", Extension=extension, ContentType="application/octet")
        for part in overrides:
            ElementTree.SubElement(types, "Override", PartName=f"/{part}", ContentType="application/octet")
        return ElementTree.tostring(types, encoding="utf-8", xml_declaration=True)


class FolderArchiver(PackageArchiver):
    """目录输出（复制包）：不压缩，直接复制文件"""

    kind = ArchiverKind.FOLDER
    writes_directory = True

    def __init__(self, settings: Optional[FolderArchiverModel] = None):
        super().__init__(settings or FolderArchiverModel())

    @classmethod
    def extension_for(cls, settings: ArchiverSettings) -> str:
        return ""

    def _write(self, entries, temp_path, tracker, descriptor) -> None:
        for entry in entries:
            target = temp_path.joinpath(*PurePosixPath(entry.relative_path).parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            with entry.open() as src, open(target, 'wb') as dst:
                _copy_chunks(src, dst, tracker)
            if entry.source is not None:
                shutil.copystat(entry.source, target)
            tracker.file_done()

    def _output_size(self, destination: Path) -> int:
        return sum(p.stat().st_size for p in destination.rglob('*') if p.is_file())


# 后端分派表：新增后端只需添加一个配置变体和一个处理类
_ARCHIVERS: Dict[ArchiverKind, Type[PackageArchiver]] = {
    ArchiverKind.ZIP: ZipArchiver,
    ArchiverKind.ARCHIVE: TarArchiver,
    ArchiverKind.ZSTD: ZstdArchiver,
    ArchiverKind.NUGET: NuGetArchiver,
    ArchiverKind.FOLDER: FolderArchiver,
}


def create_archiver(settings: ArchiverSettings) -> PackageArchiver:
    """根据配置创建归档器实例（每个任务一个实例）"""
    return _ARCHIVERS[ArchiverKind(settings.kind)](settings)


def archive_extension(settings: ArchiverSettings) -> str:
    """根据配置获取输出扩展名"""
    return _ARCHIVERS[ArchiverKind(settings.kind)].extension_for(settings)


def known_extensions() -> List[str]:
    """所有后端可能产生的扩展名，长扩展名在前"""
    extensions = {".zip", ".tar", ".tar.gz", ".tar.bz2", ".tar.xz", ".tar.zst", ".nupkg"}
    return sorted(extensions, key=len, reverse=True)


def available_archivers() -> List[ArchiverKind]:
    """获取可用的归档后端列表"""
    return list(_ARCHIVERS)
