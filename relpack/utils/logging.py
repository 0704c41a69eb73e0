"""
日志工具 - 统一输出门面

提供线程安全、带时间戳的统一输出接口，封装底层的 Rich Console。
压缩任务在线程池中并发执行，所有输出都经过同一把锁。
"""

import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

from rich.console import Console


class OutputLevel:
    """输出级别常量"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogStage:
    """日志阶段标记"""
    INIT = "INIT"
    SCAN = "SCAN"
    DIFF = "DIFF"
    PLAN = "PLAN"
    REUSE = "REUSE"
    COMPRESS = "COMPRESS"
    WRITE = "WRITE"
    DONE = "DONE"


_LEVEL_ORDER = {
    OutputLevel.DEBUG: 0,
    OutputLevel.INFO: 1,
    OutputLevel.SUCCESS: 1,
    OutputLevel.WARNING: 2,
    OutputLevel.ERROR: 3,
}

_LEVEL_STYLES = {
    OutputLevel.DEBUG: "dim",
    OutputLevel.INFO: "default",
    OutputLevel.SUCCESS: "green",
    OutputLevel.WARNING: "yellow",
    OutputLevel.ERROR: "red bold",
}


class OutputFacade:
    """输出门面

    统一封装所有输出操作。普通输出写 stdout，错误写 stderr，
    可选同时追加到日志文件。
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._file_handle = None  # type: Optional[Any]
        self._log_level = OutputLevel.INFO
        self._date_format = "%Y-%m-%d %H:%M:%S"
        self._time_format = "%H:%M:%S"

        self._console = Console(
            file=sys.stdout,
            highlight=False,  # 关闭语法高亮以提高性能
            log_time=False,
            log_path=False,
        )
        self._error_console = Console(file=sys.stderr, highlight=False)

    def _get_timestamp(self, include_date: bool = False) -> str:
        """获取格式化的时间戳"""
        now = datetime.now()
        if include_date:
            return now.strftime(self._date_format)
        return now.strftime(self._time_format)

    def _should_output(self, level: str) -> bool:
        """判断是否应该输出该级别的消息"""
        current_level = _LEVEL_ORDER.get(self._log_level, 1)
        msg_level = _LEVEL_ORDER.get(level, 1)
        return msg_level >= current_level

    def _format_message(self, message: str, level: str = OutputLevel.INFO,
                        stage: Optional[str] = None, include_date: bool = False) -> str:
        """格式化消息（纯文本）"""
        timestamp = self._get_timestamp(include_date)

        if stage:
            return f"[{timestamp}] [{level}] [{stage}] {message}"
        return f"[{timestamp}] [{level}] {message}"

    def _emit(self, message: str, level: str, stage: Optional[str] = None, **kwargs):
        if not self._should_output(level):
            return

        with self._lock:
            console = self._error_console if level == OutputLevel.ERROR else self._console
            timestamp = self._get_timestamp()
            if stage:
                formatted = f"[dim]{timestamp}[/dim] [bold]{level}[/bold] [cyan]{stage}[/cyan] {message}"
            else:
                formatted = f"[dim]{timestamp}[/dim] [bold]{level}[/bold] {message}"

            try:
                console.print(formatted, style=_LEVEL_STYLES.get(level, "default"), **kwargs)
            except Exception:
                # 终端不支持 markup 时回退为纯文本
                stream = sys.stderr if level == OutputLevel.ERROR else sys.stdout
                stream.write(self._format_message(message, level, stage) + "\n")
                stream.flush()

            self._write_to_file(message, level, stage)

    def set_level(self, level: str):
        """设置输出级别"""
        with self._lock:
            if level in (OutputLevel.DEBUG, OutputLevel.INFO, OutputLevel.WARNING, OutputLevel.ERROR):
                self._log_level = level

    def get_level(self) -> str:
        return self._log_level

    def set_log_file(self, file_path: Union[str, Path]):
        """设置日志文件"""
        with self._lock:
            self._close_file()

            try:
                log_path = Path(file_path)
                log_path.parent.mkdir(parents=True, exist_ok=True)
                self._file_handle = open(log_path, 'a', encoding='utf-8')
            except OSError as e:
                self.warning(f"无法打开日志文件 {file_path}: {e}")

    def _write_to_file(self, message: str, level: str, stage: Optional[str] = None):
        """写入日志文件"""
        if not self._file_handle:
            return

        try:
            formatted = self._format_message(message, level, stage, include_date=True)
            self._file_handle.write(formatted + "\n")
            self._file_handle.flush()
        except OSError:
            pass  # 文件写入失败不应该影响构建

    def _close_file(self):
        if self._file_handle:
            try:
                self._file_handle.close()
            except OSError:
                pass
            self._file_handle = None

    def debug(self, message: str, stage: Optional[str] = None, **kwargs):
        """调试信息"""
        self._emit(message, OutputLevel.DEBUG, stage, **kwargs)

    def info(self, message: str, stage: Optional[str] = None, **kwargs):
        """普通信息"""
        self._emit(message, OutputLevel.INFO, stage, **kwargs)

    def success(self, message: str, stage: Optional[str] = None, **kwargs):
        """成功信息"""
        self._emit(message, OutputLevel.SUCCESS, stage, **kwargs)

    def warning(self, message: str, stage: Optional[str] = None, **kwargs):
        """警告信息"""
        self._emit(message, OutputLevel.WARNING, stage, **kwargs)

    def error(self, message: str, stage: Optional[str] = None, **kwargs):
        """错误信息（输出到 stderr）"""
        self._emit(message, OutputLevel.ERROR, stage, **kwargs)

    def close(self):
        """关闭输出门面"""
        with self._lock:
            self._close_file()


# 全局输出门面实例
_output_facade: Optional[OutputFacade] = None
_facade_lock = threading.Lock()


def get_output_facade() -> OutputFacade:
    """获取全局输出门面实例"""
    global _output_facade
    if _output_facade is None:
        with _facade_lock:
            if _output_facade is None:
                _output_facade = OutputFacade()
    return _output_facade


def debug(message: str, stage: Optional[str] = None, **kwargs):
    """调试信息输出"""
    get_output_facade().debug(message, stage, **kwargs)


def info(message: str, stage: Optional[str] = None, **kwargs):
    """普通信息输出"""
    get_output_facade().info(message, stage, **kwargs)


def success(message: str, stage: Optional[str] = None, **kwargs):
    """成功信息输出"""
    get_output_facade().success(message, stage, **kwargs)


def warning(message: str, stage: Optional[str] = None, **kwargs):
    """警告信息输出"""
    get_output_facade().warning(message, stage, **kwargs)


def error(message: str, stage: Optional[str] = None, **kwargs):
    """错误信息输出"""
    get_output_facade().error(message, stage, **kwargs)


def set_log_level(level: str):
    """设置全局日志级别"""
    get_output_facade().set_level(level)


def set_log_file(file_path: Union[str, Path]):
    """设置全局日志文件"""
    get_output_facade().set_log_file(file_path)


def close_logger():
    """关闭日志系统"""
    global _output_facade
    if _output_facade:
        _output_facade.close()
        _output_facade = None


class StageLogger:
    """阶段日志器，固定附带阶段标记"""

    def __init__(self, stage: str):
        self.stage = stage

    def debug(self, message: str, **kwargs):
        debug(message, self.stage, **kwargs)

    def info(self, message: str, **kwargs):
        info(message, self.stage, **kwargs)

    def success(self, message: str, **kwargs):
        success(message, self.stage, **kwargs)

    def warning(self, message: str, **kwargs):
        warning(message, self.stage, **kwargs)

    def error(self, message: str, **kwargs):
        error(message, self.stage, **kwargs)


def get_stage_logger(stage: str) -> StageLogger:
    """获取阶段日志器"""
    return StageLogger(stage)


def configure_logging(level: str = "INFO", log_file: Optional[Union[str, Path]] = None):
    """配置日志系统"""
    set_log_level(level)
    if log_file:
        set_log_file(log_file)


# 便捷的阶段日志器实例
reuse_logger = get_stage_logger(LogStage.REUSE)
write_logger = get_stage_logger(LogStage.WRITE)


import atexit
atexit.register(close_logger)
