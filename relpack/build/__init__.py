"""构建服务模块

提供发布包构建的核心功能。
"""

from .builder import (
    BuildState,
    ReleaseBuilder,
    build_release,
    create_copy_package,
    create_delta_package,
    DELTA_METADATA_NAME,
)
from .collector import FileCollector, FileInfo, FileSetSpec, FolderSnapshot, collect_files, filter_paths
from .differ import ChangeKind, DeltaEntry, PackageDiffer, diff_snapshots
from .archivers import (
    ArchiveEntry,
    ArchiveResult,
    PackageArchiver,
    ZipArchiver,
    TarArchiver,
    ZstdArchiver,
    NuGetArchiver,
    FolderArchiver,
    create_archiver,
    archive_extension,
)
from .reuse import ExistingPackageRecord, ReuseLedger, find_reusable, load_existing_records
from .scheduler import CompressionJob, CompressionScheduler, JobResult, ProgressAggregator
from .models import BuildManifest, BuildOutcome, ManifestEntry, PackageDescriptor, PackageKind

__all__ = [
    # 主构建器
    "ReleaseBuilder",
    "BuildState",
    "build_release",
    "create_copy_package",
    "create_delta_package",
    "DELTA_METADATA_NAME",

    # 文件收集
    "FileCollector",
    "FileInfo",
    "FileSetSpec",
    "FolderSnapshot",
    "collect_files",
    "filter_paths",

    # 差异计算
    "ChangeKind",
    "DeltaEntry",
    "PackageDiffer",
    "diff_snapshots",

    # 归档相关
    "ArchiveEntry",
    "ArchiveResult",
    "PackageArchiver",
    "ZipArchiver",
    "TarArchiver",
    "ZstdArchiver",
    "NuGetArchiver",
    "FolderArchiver",
    "create_archiver",
    "archive_extension",

    # 已有包复用
    "ExistingPackageRecord",
    "ReuseLedger",
    "find_reusable",
    "load_existing_records",

    # 调度
    "CompressionJob",
    "CompressionScheduler",
    "JobResult",
    "ProgressAggregator",

    # 数据模型
    "BuildManifest",
    "BuildOutcome",
    "ManifestEntry",
    "PackageDescriptor",
    "PackageKind",
]
