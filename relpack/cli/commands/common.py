"""
命令共享工具

进度条、日志初始化、归档后端选项解析以及结果输出。
"""

from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from ...build.models import BuildManifest, BuildOutcome
from ...config.loader import ConfigError, ConfigValidationError
from ...config.schema import (
    ArchiverSettings,
    FolderArchiverModel,
    NuGetArchiverModel,
    TarArchiverModel,
    TarFormat,
    ZipArchiverModel,
    ZstdArchiverModel,
)
from ...errors import PartialBuildFailure, ReleaseBuildError
from ...utils import format_size
from ...utils.logging import OutputLevel, configure_logging

console = Console()

_PROGRESS_STEPS = 10000


class ArchiverChoice(str, Enum):
    """命令行可选的归档后端"""
    FOLDER = "folder"
    ZIP = "zip"
    TAR = "tar"
    GZTAR = "gztar"
    BZTAR = "bztar"
    XZTAR = "xztar"
    ZSTD = "zstd"
    NUGET = "nuget"


def archiver_settings(choice: ArchiverChoice, level: Optional[int] = None) -> ArchiverSettings:
    """将命令行选项转换为归档配置"""
    if choice == ArchiverChoice.FOLDER:
        return FolderArchiverModel()
    if choice == ArchiverChoice.ZIP:
        return ZipArchiverModel(level=level) if level is not None else ZipArchiverModel()
    if choice == ArchiverChoice.ZSTD:
        return ZstdArchiverModel(level=level) if level is not None else ZstdArchiverModel()
    if choice == ArchiverChoice.NUGET:
        return NuGetArchiverModel(level=level) if level is not None else NuGetArchiverModel()

    fmt = TarFormat(choice.value)
    if level is not None:
        return TarArchiverModel(format=fmt, level=level)
    return TarArchiverModel(format=fmt)


def setup_logging(verbose: bool, log_file: Optional[str]) -> None:
    """在任何输出前初始化日志"""
    configure_logging(OutputLevel.DEBUG if verbose else OutputLevel.INFO, log_file)


@contextmanager
def progress_bar(description: str) -> Iterator:
    """rich 进度条，产出一个接收 [0, 1] 进度的回调"""
    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=False,
    ) as progress:
        task_id = progress.add_task(description, total=_PROGRESS_STEPS)

        def sink(value: float) -> None:
            progress.update(task_id, completed=int(value * _PROGRESS_STEPS))

        yield sink


def print_manifest(manifest: BuildManifest) -> None:
    """以表格形式输出构建清单"""
    table = Table(title="构建结果")
    table.add_column("包", style="cyan")
    table.add_column("状态")
    table.add_column("大小", justify="right", style="green")
    table.add_column("说明", style="yellow")

    styles = {
        BuildOutcome.BUILT: "[green]已构建[/green]",
        BuildOutcome.SKIPPED: "[blue]已复用[/blue]",
        BuildOutcome.FAILED: "[red]失败[/red]",
    }
    for entry in manifest:
        if entry.outcome == BuildOutcome.FAILED:
            note = entry.error or ""
        elif entry.reused_from is not None:
            note = f"来自 {entry.reused_from.name}"
        else:
            note = f"{entry.file_count} 个文件"
        table.add_row(
            entry.descriptor.file_name,
            styles[entry.outcome],
            format_size(entry.size) if entry.succeeded else "-",
            note,
        )

    console.print(table)


def report_error(exc: Exception) -> None:
    """输出构建错误并退出"""
    if isinstance(exc, ConfigValidationError):
        console.print("[red]配置验证失败:[/red]")
        console.print(exc.format_errors())
    elif isinstance(exc, PartialBuildFailure):
        print_manifest(exc.manifest)
        console.print(f"[red]{exc}[/red]")
    elif isinstance(exc, (ConfigError, ReleaseBuildError)):
        console.print(f"[red]{exc}[/red]")
    else:
        console.print(f"[red]构建失败: {exc}[/red]")
    raise typer.Exit(1)
