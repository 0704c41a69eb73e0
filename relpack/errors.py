"""
构建错误定义

配置/校验类错误（NotFoundError、InvalidPatternError、EmptyFileSetError）在任何
压缩任务开始前抛出；ArchiveWriteError 只影响单个任务；PartialBuildFailure 汇总
一次构建中失败的描述符。
"""

from typing import TYPE_CHECKING, List, Optional, Tuple

if TYPE_CHECKING:
    from .build.models import BuildManifest, PackageDescriptor


class ReleaseBuildError(Exception):
    """构建错误基类"""
    pass


class NotFoundError(ReleaseBuildError, FileNotFoundError):
    """输入目录或文件不存在"""

    def __init__(self, message: str, path: Optional[object] = None):
        super().__init__(message)
        self.path = path


class InvalidPatternError(ReleaseBuildError, ValueError):
    """正则表达式格式错误"""

    def __init__(self, pattern: str, reason: str):
        super().__init__(f"无效的正则表达式 {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class ArchiveWriteError(ReleaseBuildError):
    """写入归档文件失败"""
    pass


class EmptyFileSetError(ReleaseBuildError):
    """过滤或差异计算后没有可打包的文件"""
    pass


class ReuseMismatchError(ReleaseBuildError):
    """已有包记录无法按命名规则解析（仅记录警告，不致命）"""
    pass


class BuildCancelledError(ReleaseBuildError):
    """构建被取消，任务未开始执行"""
    pass


class PartialBuildFailure(ReleaseBuildError):
    """部分任务失败

    Attributes:
        manifest: 包含成功与失败条目的完整清单
        failures: (描述符, 错误信息) 列表
    """

    def __init__(self, manifest: 'BuildManifest', failures: List[Tuple['PackageDescriptor', str]]):
        names = ", ".join(descriptor.file_name for descriptor, _ in failures)
        super().__init__(f"{len(failures)} 个包构建失败: {names}")
        self.manifest = manifest
        self.failures = failures
