"""通用工具模块"""

from .logging import (
    configure_logging,
    get_stage_logger,
    StageLogger,
    LogStage,
    OutputLevel,
    reuse_logger,
    write_logger,
)

from .paths import (
    ensure_directory,
    temp_sibling,
    remove_path,
    replace_path,
    format_size,
    is_safe_filename,
)

__all__ = [
    # 日志相关
    "configure_logging",
    "get_stage_logger",
    "StageLogger",
    "LogStage",
    "OutputLevel",
    "reuse_logger",
    "write_logger",

    # 路径相关
    "ensure_directory",
    "temp_sibling",
    "remove_path",
    "replace_path",
    "format_size",
    "is_safe_filename",
]
