"""
relpack - 发布包构建工具

从构建输出目录生成带版本号的完整包、复制包和增量包。
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .config.schema import ReleaseConfig
from .build.builder import ReleaseBuilder, build_release

__all__ = ["ReleaseConfig", "ReleaseBuilder", "build_release", "__version__"]
