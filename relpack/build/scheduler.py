"""
并行压缩调度器

将多个压缩任务分发到有界线程池，按提交顺序（FIFO）依次放行，
并把各任务的进度按数据量加权汇总成单调不减的总进度。
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..config.schema import ArchiverSettings, resolve_parallelism
from ..errors import ArchiveWriteError, BuildCancelledError
from ..utils import format_size
from ..utils.logging import LogStage, debug, error, info, success
from .archivers import ArchiveEntry, ArchiveResult, ProgressSink, create_archiver
from .models import PackageDescriptor


@dataclass
class CompressionJob:
    """单个压缩任务：一个描述符的文件集合、输出路径和归档后端"""
    descriptor: PackageDescriptor
    entries: List[ArchiveEntry]
    destination: Path
    archiver: ArchiverSettings

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self.entries)


@dataclass
class JobResult:
    """任务结果"""
    job: CompressionJob
    success: bool
    archive: Optional[ArchiveResult] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    elapsed: float = 0.0


class ProgressAggregator:
    """加权进度汇总

    权重 = 任务数据量 / 总数据量；所有任务数据量都为 0 时改用文件数，
    再退化为等权。每次更新都在锁内完成，只向外转发递增的值。
    """

    def __init__(self, weights: Sequence[float], sink: Optional[ProgressSink] = None):
        total = float(sum(weights))
        if total > 0:
            self._weights = [w / total for w in weights]
        elif weights:
            self._weights = [1.0 / len(weights)] * len(weights)
        else:
            self._weights = []
        self._progress = [0.0] * len(self._weights)
        self._completed = [False] * len(self._weights)
        self._sink = sink
        self._lock = threading.Lock()
        self._value = 0.0

    @classmethod
    def for_jobs(cls, jobs: Sequence[CompressionJob], sink: Optional[ProgressSink] = None) -> 'ProgressAggregator':
        weights: List[float] = [job.total_size for job in jobs]
        if not any(weights):
            weights = [len(job.entries) for job in jobs]
        return cls(weights, sink)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def update(self, index: int, fraction: float) -> None:
        """更新单个任务的进度（任务自身进度同样只增不减）"""
        fraction = min(1.0, max(0.0, fraction))
        with self._lock:
            if fraction <= self._progress[index]:
                return
            self._progress[index] = fraction
            self._publish(sum(w * p for w, p in zip(self._weights, self._progress)))

    def complete(self, index: int) -> None:
        """标记任务成功完成；全部完成时总进度恰好为 1.0"""
        with self._lock:
            self._progress[index] = 1.0
            self._completed[index] = True
            if all(self._completed):
                self._publish(1.0)
            else:
                self._publish(sum(w * p for w, p in zip(self._weights, self._progress)))

    def sink_for(self, index: int) -> Callable[[float], None]:
        return lambda fraction: self.update(index, fraction)

    def _publish(self, value: float) -> None:
        # 浮点累加可能略超 1.0，只有 complete() 可以发布 1.0
        if value >= 1.0 and not all(self._completed):
            value = min(value, 1.0 - 1e-9)
        if value > self._value:
            self._value = value
            if self._sink:
                self._sink(value)


class CompressionScheduler:
    """并行压缩调度器

    最多同时运行 max_parallelism 个任务；一个任务失败不会取消其他任务，
    所有结果（成功或失败）按提交顺序返回。
    """

    def __init__(self, max_parallelism: Optional[int] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.max_parallelism = resolve_parallelism(max_parallelism)
        self.cancel_event = cancel_event

    def run(self, jobs: Sequence[CompressionJob], progress: Optional[ProgressSink] = None) -> List[JobResult]:
        """执行所有任务

        Args:
            jobs: 任务列表（按提交顺序放行）
            progress: 总进度回调

        Returns:
            List[JobResult]: 与 jobs 一一对应的结果
        """
        jobs = list(jobs)
        if not jobs:
            return []

        aggregator = ProgressAggregator.for_jobs(jobs, progress)
        workers = min(self.max_parallelism, len(jobs))
        info(f"开始压缩: {len(jobs)} 个任务，并行度 {workers}", stage=LogStage.COMPRESS)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relpack-compress") as executor:
            futures = [
                executor.submit(self._run_job, index, job, aggregator)
                for index, job in enumerate(jobs)
            ]
            results = [future.result() for future in futures]

        failed = sum(1 for r in results if not r.success)
        if failed:
            error(f"压缩结束: {len(jobs) - failed} 个成功，{failed} 个失败", stage=LogStage.COMPRESS)
        else:
            success(f"压缩完成: {len(jobs)} 个任务", stage=LogStage.COMPRESS)
        return results

    def _run_job(self, index: int, job: CompressionJob, aggregator: ProgressAggregator) -> JobResult:
        """在工作线程中执行单个任务，异常记录进结果而不向上抛出"""
        if self.cancel_event is not None and self.cancel_event.is_set():
            cancelled = BuildCancelledError(f"构建已取消，未执行: {job.descriptor.file_name}")
            return JobResult(job=job, success=False, error=str(cancelled), exception=cancelled)

        start = time.perf_counter()
        debug(f"开始任务: {job.descriptor.file_name} ({len(job.entries)} 个文件)", stage=LogStage.COMPRESS)

        try:
            archiver = create_archiver(job.archiver)
            result = archiver.archive(
                job.entries,
                job.destination,
                progress=aggregator.sink_for(index),
                descriptor=job.descriptor,
            )
        except ArchiveWriteError as e:
            error(f"任务失败: {job.descriptor.file_name}: {e}", stage=LogStage.COMPRESS)
            return JobResult(job=job, success=False, error=str(e), exception=e,
                             elapsed=time.perf_counter() - start)
        except Exception as e:
            wrapped = ArchiveWriteError(f"任务异常 {job.descriptor.file_name}: {e}")
            wrapped.__cause__ = e
            error(str(wrapped), stage=LogStage.COMPRESS)
            return JobResult(job=job, success=False, error=str(wrapped), exception=wrapped,
                             elapsed=time.perf_counter() - start)

        aggregator.complete(index)
        elapsed = time.perf_counter() - start
        info(
            f"任务完成: {job.descriptor.file_name} "
            f"({format_size(result.input_size)} -> {format_size(result.output_size)}, {elapsed:.1f}秒)",
            stage=LogStage.COMPRESS,
        )
        return JobResult(job=job, success=True, archive=result, elapsed=elapsed)
