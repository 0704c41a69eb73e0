"""
relpack CLI 主入口

提供 release/copy/delta/validate/info 命令。
"""

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..utils import configure_logging
from .commands import copy, delta, release, validate


app = typer.Typer(
    name="relpack",
    help="relpack - 发布包构建工具（完整包、复制包、增量包）",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """显示版本信息"""
    if value:
        console.print(f"relpack v{__version__}")
        raise typer.Exit()


def verbose_callback(verbose: bool) -> None:
    """配置详细输出"""
    configure_logging(level="DEBUG" if verbose else "INFO")


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="显示版本信息"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        callback=verbose_callback,
        help="启用详细输出"
    )
) -> None:
    """relpack - 发布包构建工具

    使用 --help 查看可用命令的详细信息。
    """
    pass


app.command("release", help="按配置文件构建发布包")(release.release_command)
app.command("copy", help="生成复制包")(copy.copy_command)
app.command("delta", help="生成增量包")(delta.delta_command)
app.command("validate", help="验证配置文件")(validate.validate_command)


@app.command("info")
def info_command() -> None:
    """显示系统信息"""
    import zstandard

    from ..build.archivers import available_archivers

    table = Table(title="版本信息")
    table.add_column("组件", style="cyan")
    table.add_column("版本", style="green")
    table.add_row("relpack", __version__)
    table.add_row("Python", f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
    table.add_row("zstandard", zstandard.__version__)
    console.print(table)
    console.print()

    archiver_table = Table(title="支持的归档后端")
    archiver_table.add_column("后端", style="cyan")
    archiver_table.add_column("状态", style="green")
    for kind in available_archivers():
        archiver_table.add_row(kind.value, "✓ 可用")
    console.print(archiver_table)


if __name__ == "__main__":
    app()
