"""
并行压缩调度器单元测试

测试并行度上限、提交顺序、失败隔离以及进度汇总。
"""

import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from relpack.build.archivers import ArchiveEntry, ArchiveResult
from relpack.build.models import PackageDescriptor, PackageKind
from relpack.build.scheduler import CompressionJob, CompressionScheduler, ProgressAggregator
from relpack.config.schema import ZipArchiverModel
from relpack.errors import ArchiveWriteError, BuildCancelledError


def _job(tmp_path: Path, version: str, size: int = 10) -> CompressionJob:
    descriptor = PackageDescriptor(
        name="app",
        version=version,
        kind=PackageKind.FULL,
        output_path=tmp_path / f"app_{version}_full.zip",
        archiver=ZipArchiverModel(),
    )
    return CompressionJob(
        descriptor=descriptor,
        entries=[ArchiveEntry.from_bytes("a.txt", b"x" * size)],
        destination=descriptor.output_path,
        archiver=descriptor.archiver,
    )


class FakeArchiver:
    """记录调用顺序和并发数的归档器"""

    def __init__(self, delay: float = 0.02, fail_versions=()):
        self.delay = delay
        self.fail_versions = set(fail_versions)
        self.lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.started = []

    def archive(self, entries, destination, progress=None, descriptor=None):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.started.append(descriptor.version)
        try:
            if progress:
                progress(0.5)
            time.sleep(self.delay)
            if descriptor.version in self.fail_versions:
                raise ArchiveWriteError(f"写入失败: {descriptor.version}")
            if progress:
                progress(1.0)
            return ArchiveResult(destination, len(entries), sum(e.size for e in entries), 1)
        finally:
            with self.lock:
                self.active -= 1



class BarrierArchiver(FakeArchiver):
    """所有任务都到达屏障后才继续的归档器"""

    def __init__(self, parties: int):
        super().__init__(delay=0)
        self.barrier = threading.Barrier(parties, timeout=5)

    def archive(self, entries, destination, progress=None, descriptor=None):
        with self.lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.started.append(descriptor.version)
        try:
            self.barrier.wait()
            return ArchiveResult(destination, len(entries), sum(e.size for e in entries), 1)
        finally:
            with self.lock:
                self.active -= 1

@pytest.fixture
def fake_archiver():
    archiver = FakeArchiver()
    with patch("relpack.build.scheduler.create_archiver", return_value=archiver):
        yield archiver


class TestProgressAggregator:
    """ProgressAggregator 测试"""

    def test_weighted_by_size(self):
        """测试按数据量加权"""
        values = []
        aggregator = ProgressAggregator([300, 100], values.append)

        aggregator.update(1, 1.0)
        assert values[-1] == pytest.approx(0.25)
        aggregator.update(0, 0.5)
        assert values[-1] == pytest.approx(0.625)

    def test_monotonic(self):
        """测试总进度只增不减"""
        values = []
        aggregator = ProgressAggregator([1, 1], values.append)

        aggregator.update(0, 0.6)
        aggregator.update(0, 0.2)
        aggregator.update(1, 0.1)

        assert values == sorted(values)
        assert aggregator.value == pytest.approx(0.35)

    def test_one_only_when_all_complete(self):
        """测试只有全部完成时才达到 1.0"""
        values = []
        aggregator = ProgressAggregator([1, 1], values.append)

        aggregator.update(0, 1.0)
        aggregator.update(1, 1.0)
        assert aggregator.value < 1.0

        aggregator.complete(0)
        assert aggregator.value < 1.0
        aggregator.complete(1)
        assert values[-1] == 1.0

    def test_zero_weights_fall_back_to_equal(self):
        """测试权重全为 0 时等权"""
        aggregator = ProgressAggregator([0, 0])
        aggregator.update(0, 1.0)
        assert aggregator.value == pytest.approx(0.5)

    def test_for_jobs_uses_file_count_when_empty(self, tmp_path):
        """测试数据量为 0 时按文件数加权"""
        jobs = [_job(tmp_path, "1.0.0", size=0), _job(tmp_path, "2.0.0", size=0)]
        jobs[1].entries.append(ArchiveEntry.from_bytes("b.txt", b""))

        aggregator = ProgressAggregator.for_jobs(jobs)
        aggregator.update(1, 1.0)

        assert aggregator.value == pytest.approx(2 / 3)


class TestCompressionScheduler:
    """CompressionScheduler 测试"""

    def test_results_in_submission_order(self, tmp_path, fake_archiver):
        """测试结果按提交顺序返回"""
        jobs = [_job(tmp_path, v) for v in ("1.0.0", "2.0.0", "3.0.0")]

        results = CompressionScheduler(max_parallelism=3).run(jobs)

        assert [r.job.descriptor.version for r in results] == ["1.0.0", "2.0.0", "3.0.0"]
        assert all(r.success for r in results)

    def test_parallelism_bound(self, tmp_path, fake_archiver):
        """测试同时运行的任务数不超过上限"""
        jobs = [_job(tmp_path, f"1.0.{i}") for i in range(6)]

        CompressionScheduler(max_parallelism=2).run(jobs)

        assert fake_archiver.max_active <= 2

    @pytest.mark.parametrize("parallelism", [2, 4])
    def test_jobs_overlap_up_to_parallelism(self, tmp_path, parallelism):
        """测试并行度为 N 时确实有 N 个任务同时运行"""
        archiver = BarrierArchiver(parallelism)
        jobs = [_job(tmp_path, f"1.0.{i}") for i in range(parallelism)]

        with patch("relpack.build.scheduler.create_archiver", return_value=archiver):
            results = CompressionScheduler(max_parallelism=parallelism).run(jobs)

        assert all(r.success for r in results)
        assert archiver.max_active == parallelism

    def test_sequential_fifo(self, tmp_path, fake_archiver):
        """测试并行度为 1 时按提交顺序依次执行"""
        versions = ["3.0.0", "1.0.0", "2.0.0"]
        jobs = [_job(tmp_path, v) for v in versions]

        CompressionScheduler(max_parallelism=1).run(jobs)

        assert fake_archiver.max_active == 1
        assert fake_archiver.started == versions

    def test_failure_does_not_cancel_others(self, tmp_path):
        """测试单个任务失败不影响其他任务"""
        archiver = FakeArchiver(fail_versions={"2.0.0"})
        jobs = [_job(tmp_path, v) for v in ("1.0.0", "2.0.0", "3.0.0")]

        with patch("relpack.build.scheduler.create_archiver", return_value=archiver):
            results = CompressionScheduler(max_parallelism=2).run(jobs)

        assert [r.success for r in results] == [True, False, True]
        assert isinstance(results[1].exception, ArchiveWriteError)
        assert "2.0.0" in results[1].error

    def test_unexpected_exception_wrapped(self, tmp_path):
        """测试非预期异常被包装为 ArchiveWriteError"""
        with patch("relpack.build.scheduler.create_archiver", side_effect=RuntimeError("boom")):
            results = CompressionScheduler(max_parallelism=1).run([_job(tmp_path, "1.0.0")])

        assert not results[0].success
        assert isinstance(results[0].exception, ArchiveWriteError)
        assert "boom" in results[0].error

    def test_progress_reaches_one_on_success(self, tmp_path, fake_archiver):
        """测试全部成功时进度单调并以 1.0 结束"""
        values = []
        lock = threading.Lock()

        def sink(value):
            with lock:
                values.append(value)

        jobs = [_job(tmp_path, v, size=s) for v, s in (("1.0.0", 10), ("2.0.0", 30))]
        CompressionScheduler(max_parallelism=2).run(jobs, progress=sink)

        assert values == sorted(values)
        assert values[-1] == 1.0

    def test_progress_below_one_on_failure(self, tmp_path):
        """测试有任务失败时进度不会达到 1.0"""
        values = []
        archiver = FakeArchiver(fail_versions={"1.0.0"})
        jobs = [_job(tmp_path, v) for v in ("1.0.0", "2.0.0")]

        with patch("relpack.build.scheduler.create_archiver", return_value=archiver):
            CompressionScheduler(max_parallelism=1).run(jobs, progress=values.append)

        assert values
        assert max(values) < 1.0

    def test_cancelled_jobs_not_started(self, tmp_path, fake_archiver):
        """测试取消后未开始的任务不会执行"""
        cancel = threading.Event()
        cancel.set()

        results = CompressionScheduler(max_parallelism=1, cancel_event=cancel).run([_job(tmp_path, "1.0.0")])

        assert fake_archiver.started == []
        assert isinstance(results[0].exception, BuildCancelledError)

    def test_empty_job_list(self):
        """测试没有任务"""
        assert CompressionScheduler(max_parallelism=2).run([]) == []

    def test_default_parallelism_uses_cpu_count(self):
        """测试并行度 0 表示 CPU 核数"""
        with patch("relpack.config.schema.os.cpu_count", return_value=7):
            assert CompressionScheduler(max_parallelism=0).max_parallelism == 7
