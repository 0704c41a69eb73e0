"""
发布构建器

协调整个发布构建流程：扫描 -> 规划 -> 构建 -> 收尾。

状态机：CONFIGURED -> SCANNING -> PLANNING -> BUILDING -> FINALIZED，
任何非终止状态都可能进入 FAILED。
"""

import json
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from ..config.loader import resolve_existing_packages, resolve_patterns
from ..config.schema import (
    ArchiverSettings,
    PackageRequestModel,
    ReleaseConfig,
    SignaturePolicy,
    ZipArchiverModel,
)
from ..errors import EmptyFileSetError, PartialBuildFailure, ReleaseBuildError
from ..utils import ensure_directory, format_size
from ..utils.logging import LogStage, error, info, success, warning, write_logger
from ..utils.paths import remove_path, temp_sibling
from .archivers import ArchiveEntry, ProgressSink, archive_extension
from .collector import FileCollector, FileSetSpec
from .differ import ChangeKind, DeltaEntry, PackageDiffer, group_by_kind
from .models import (
    BuildManifest,
    BuildOutcome,
    ManifestEntry,
    PackageDescriptor,
    PackageKind,
    package_stem,
)
from .reuse import ExistingPackageRecord, ReuseLedger, load_existing_records, materialize_reuse
from .scheduler import CompressionJob, CompressionScheduler, JobResult

# 增量包内记录变更（包括删除的文件）的元数据文件
DELTA_METADATA_NAME = "relpack-delta.json"
RELEASE_MANIFEST_NAME = "release.json"

# 成功收尾前进度的上限
_BEFORE_FINALIZE_LIMIT = 1.0 - 1e-9


class BuildState(str, Enum):
    """构建状态"""
    CONFIGURED = "configured"
    SCANNING = "scanning"
    PLANNING = "planning"
    BUILDING = "building"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class PackagePlan:
    """单个包请求扫描后的计划"""
    request: PackageRequestModel
    descriptor: PackageDescriptor
    entries: List[ArchiveEntry] = field(default_factory=list)
    delta: Optional[List[DeltaEntry]] = None
    reused: Optional[ExistingPackageRecord] = None
    reuse_error: Optional[str] = None


class ReleaseBuilder:
    """发布构建器

    每个实例只执行一次 build()。
    """

    def __init__(self, config: ReleaseConfig, cancel_event: Optional[threading.Event] = None):
        self.config = config
        self.cancel_event = cancel_event
        self.state = BuildState.CONFIGURED
        self.plans: List[PackagePlan] = []
        self.build_stats: Dict[str, float] = {'start_time': 0.0, 'end_time': 0.0}

    @property
    def output_folder(self) -> Path:
        return Path(self.config.output_folder)

    def build(self, progress: Optional[ProgressSink] = None) -> BuildManifest:
        """执行构建

        Args:
            progress: 总进度回调，值在 [0, 1] 之间且单调不减

        Returns:
            BuildManifest: 构建清单（条目顺序与请求顺序一致）

        Raises:
            NotFoundError / InvalidPatternError / EmptyFileSetError: 任何任务开始前的致命错误
            PartialBuildFailure: 部分包构建失败，异常携带完整清单
        """
        if self.state != BuildState.CONFIGURED:
            raise ReleaseBuildError(f"构建器状态为 {self.state.value}，不能重复构建")

        self.build_stats['start_time'] = time.time()
        sink = _MonotonicSink(progress)
        info(f"开始构建发布包: {self.config.package_name} -> {self.output_folder}", stage=LogStage.INIT)

        try:
            self._enter(BuildState.SCANNING)
            self.plans = self._scan()

            self._enter(BuildState.PLANNING)
            jobs = self._plan(self.plans)

            self._enter(BuildState.BUILDING)
            results = self._build(jobs, sink.before_finalize)

            manifest = self._finalize(self.plans, results)
        except Exception as e:
            self._enter(BuildState.FAILED)
            error(f"构建失败: {e}", stage=LogStage.DONE)
            raise

        self.build_stats['end_time'] = time.time()
        if manifest.failed:
            self._enter(BuildState.FAILED)
            failures = [(entry.descriptor, entry.error or "") for entry in manifest.failed]
            for descriptor, reason in failures:
                error(f"  {descriptor.file_name}: {reason}", stage=LogStage.DONE)
            raise PartialBuildFailure(manifest, failures)

        sink(1.0)
        self._enter(BuildState.FINALIZED)
        self._log_summary(manifest)
        return manifest

    def _enter(self, state: BuildState) -> None:
        self.state = state

    def _scan(self) -> List[PackagePlan]:
        """扫描阶段：先编译全部规则，再遍历目录"""
        specs = []
        for request in self.config.packages:
            include, exclude = resolve_patterns(request)
            specs.append(FileSetSpec(include, exclude))

        plans = []
        for request, spec in zip(self.config.packages, specs):
            plans.append(self._scan_request(request, spec))
        return plans

    def _scan_request(self, request: PackageRequestModel, spec: FileSetSpec) -> PackagePlan:
        kind = PackageKind(request.kind)
        descriptor = self._make_descriptor(request, kind)

        if kind == PackageKind.FULL:
            snapshot = FileCollector(compute_digest=False).collect(request.folder, spec)
            if not snapshot:
                raise EmptyFileSetError(f"过滤后没有可打包的文件: {request.folder}")
            entries = [ArchiveEntry.from_file(f) for f in snapshot.files()]
            return PackagePlan(request=request, descriptor=descriptor, entries=entries)

        compute_digest = self.config.signature == SignaturePolicy.SIZE_HASH
        collector = FileCollector(compute_digest=compute_digest)
        old = collector.collect(request.previous_folder, spec)
        new = collector.collect(request.folder, spec)
        delta = PackageDiffer(self.config.signature).diff(old, new)
        if not delta:
            raise EmptyFileSetError(
                f"版本 {request.previous_version} 与 {request.version} 之间没有差异"
            )

        entries = [ArchiveEntry.from_file(e.source) for e in delta if e.has_payload]
        entries.append(ArchiveEntry.from_bytes(DELTA_METADATA_NAME, self._delta_metadata(descriptor, delta)))
        return PackagePlan(request=request, descriptor=descriptor, entries=entries, delta=delta)

    def _make_descriptor(self, request: PackageRequestModel, kind: PackageKind) -> PackageDescriptor:
        from_version = request.previous_version if kind == PackageKind.DELTA else None
        stem = package_stem(self.config.package_name, request.version, kind, from_version)
        return PackageDescriptor(
            name=self.config.package_name,
            version=request.version,
            kind=kind,
            output_path=self.output_folder / f"{stem}{archive_extension(self.config.archiver)}",
            archiver=self.config.archiver,
            from_version=from_version,
        )

    @staticmethod
    def _delta_metadata(descriptor: PackageDescriptor, delta: List[DeltaEntry]) -> bytes:
        grouped = group_by_kind(delta)
        data = {
            'name': descriptor.name,
            'version': descriptor.version,
            'from_version': descriptor.from_version,
            'added': grouped[ChangeKind.ADDED],
            'modified': grouped[ChangeKind.MODIFIED],
            'removed': grouped[ChangeKind.REMOVED],
        }
        return json.dumps(data, ensure_ascii=False, indent=2).encode('utf-8')

    def _plan(self, plans: List[PackagePlan]) -> List[CompressionJob]:
        """规划阶段：复用已有包，剩余的生成压缩任务"""
        ensure_directory(self.output_folder)
        records = load_existing_records(resolve_existing_packages(self.config))
        ledger = ReuseLedger(records, allow_multiple=self.config.allow_multiple_reuse)

        jobs = []
        for plan in plans:
            record = ledger.claim(plan.descriptor)
            if record is None:
                jobs.append(CompressionJob(
                    descriptor=plan.descriptor,
                    entries=plan.entries,
                    destination=plan.descriptor.output_path,
                    archiver=plan.descriptor.archiver,
                ))
                continue

            plan.reused = record
            try:
                materialize_reuse(record, plan.descriptor.output_path)
            except OSError as e:
                plan.reuse_error = f"复制已有包失败 {record.path}: {e}"
                warning(plan.reuse_error, stage=LogStage.REUSE)

        info(f"规划完成: {len(jobs)} 个需要构建，{len(plans) - len(jobs)} 个复用", stage=LogStage.PLAN)
        return jobs

    def _build(self, jobs: List[CompressionJob], sink: ProgressSink) -> List[JobResult]:
        """构建阶段：交给调度器并行压缩"""
        scheduler = CompressionScheduler(self.config.resolved_parallelism(), self.cancel_event)
        return scheduler.run(jobs, progress=sink)

    def _finalize(self, plans: List[PackagePlan], results: List[JobResult]) -> BuildManifest:
        """收尾阶段：按请求顺序组装清单"""
        by_destination = {result.job.destination: result for result in results}
        manifest = BuildManifest()

        for plan in plans:
            descriptor = plan.descriptor
            if plan.reused is not None:
                if plan.reuse_error:
                    entry = ManifestEntry(descriptor, BuildOutcome.FAILED,
                                          reused_from=plan.reused.path, error=plan.reuse_error)
                else:
                    entry = ManifestEntry(
                        descriptor,
                        BuildOutcome.SKIPPED,
                        output_path=descriptor.output_path,
                        reused_from=plan.reused.path,
                        size=_path_size(descriptor.output_path),
                    )
            else:
                result = by_destination[descriptor.output_path]
                if result.success:
                    entry = ManifestEntry(
                        descriptor,
                        BuildOutcome.BUILT,
                        output_path=descriptor.output_path,
                        file_count=result.archive.file_count,
                        size=result.archive.output_size,
                    )
                else:
                    entry = ManifestEntry(descriptor, BuildOutcome.FAILED, error=result.error)
            manifest.entries.append(entry)

        if self.config.write_manifest:
            write_manifest_file(manifest, self.output_folder / RELEASE_MANIFEST_NAME)
        return manifest

    def _log_summary(self, manifest: BuildManifest) -> None:
        build_time = self.build_stats['end_time'] - self.build_stats['start_time']
        success(f"发布包构建成功: {self.output_folder}", stage=LogStage.DONE)
        info(f"  构建: {len(manifest.built)}，复用: {len(manifest.skipped)}")
        info(f"  总大小: {format_size(sum(e.size for e in manifest.entries))}")
        info(f"  构建时间: {build_time:.1f}秒")


class _MonotonicSink:
    """保证转发给调用方的进度单调不减"""

    def __init__(self, sink: Optional[ProgressSink]):
        self._sink = sink
        self._last = 0.0
        self._lock = threading.Lock()

    def __call__(self, value: float) -> None:
        with self._lock:
            value = min(1.0, max(0.0, value))
            if value <= self._last:
                return
            self._last = value
            if self._sink:
                self._sink(value)

    def before_finalize(self, value: float) -> None:
        """收尾前的进度，不会到达 1.0"""
        self(min(value, _BEFORE_FINALIZE_LIMIT))


def _path_size(path: Path) -> int:
    if path.is_dir():
        return sum(p.stat().st_size for p in path.rglob('*') if p.is_file())
    return path.stat().st_size if path.exists() else 0


def write_manifest_file(manifest: BuildManifest, path: Path) -> Path:
    """原子写入 JSON 清单"""
    temp_path = temp_sibling(path)
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(manifest.to_dict(), f, ensure_ascii=False, indent=2)
        os.replace(temp_path, path)
    except OSError:
        remove_path(temp_path)
        raise
    write_logger.info(f"已写入构建清单: {path}")
    return path


def build_release(config: ReleaseConfig, progress: Optional[ProgressSink] = None,
                  cancel_event: Optional[threading.Event] = None) -> BuildManifest:
    """便捷函数：按配置构建发布包"""
    return ReleaseBuilder(config, cancel_event).build(progress)


def create_copy_package(
    folder: Union[str, Path],
    output_folder: Union[str, Path],
    version: str,
    package_name: str = "package",
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    archiver: Optional[ArchiverSettings] = None,
    progress: Optional[ProgressSink] = None,
) -> ManifestEntry:
    """便捷函数：生成单个复制包（带过滤规则的完整包）"""
    config = ReleaseConfig(
        package_name=package_name,
        output_folder=Path(output_folder),
        archiver=archiver or ZipArchiverModel(),
        max_parallelism=1,
        packages=[PackageRequestModel(
            kind="full",
            version=version,
            folder=Path(folder),
            include=list(include) if include else None,
            exclude=list(exclude) if exclude else None,
        )],
    )
    return build_release(config, progress).entries[0]


def create_delta_package(
    previous_folder: Union[str, Path],
    folder: Union[str, Path],
    output_folder: Union[str, Path],
    previous_version: str,
    version: str,
    package_name: str = "package",
    include: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    archiver: Optional[ArchiverSettings] = None,
    signature: SignaturePolicy = SignaturePolicy.SIZE_HASH,
    progress: Optional[ProgressSink] = None,
) -> ManifestEntry:
    """便捷函数：生成单个增量包"""
    config = ReleaseConfig(
        package_name=package_name,
        output_folder=Path(output_folder),
        archiver=archiver or ZipArchiverModel(),
        max_parallelism=1,
        signature=signature,
        packages=[PackageRequestModel(
            kind="delta",
            version=version,
            folder=Path(folder),
            previous_version=previous_version,
            previous_folder=Path(previous_folder),
            include=list(include) if include else None,
            exclude=list(exclude) if exclude else None,
        )],
    )
    return build_release(config, progress).entries[0]
