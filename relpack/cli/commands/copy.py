"""
Copy 命令实现

从单个目录生成一个复制包，默认输出为未压缩的目录。
"""

from pathlib import Path
from typing import Optional

import typer

from ...build.models import BuildManifest
from ...config import read_lines
from .common import (
    ArchiverChoice,
    archiver_settings,
    console,
    print_manifest,
    progress_bar,
    report_error,
    setup_logging,
)


def copy_command(
    folder: str = typer.Option(..., "--folder", "-f", help="要打包的目录"),
    output: str = typer.Option(..., "--output", "-o", help="输出目录"),
    version: str = typer.Option(..., "--version", help="包版本号"),
    package_name: str = typer.Option("package", "--package-name", "-n", help="包名"),
    include_regexes: Optional[str] = typer.Option(None, "--include-regexes", help="包含规则文件，每行一个正则"),
    ignore_regexes: Optional[str] = typer.Option(None, "--ignore-regexes", help="排除规则文件，每行一个正则"),
    archiver: ArchiverChoice = typer.Option(ArchiverChoice.FOLDER, "--archiver", "-a", help="归档后端"),
    level: Optional[int] = typer.Option(None, "--level", help="压缩级别"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="日志输出文件"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出详细调试日志 (DEBUG 级别)"),
) -> None:
    """生成复制包

    示例:
        relpack copy -f ./bin -o ./out --version 1.2.0
        relpack copy -f ./bin -o ./out --version 1.2.0 --ignore-regexes ignore.txt -a zip
    """
    from ...build.builder import create_copy_package

    setup_logging(verbose, log_file)

    try:
        include = read_lines(include_regexes) if include_regexes else None
        exclude = read_lines(ignore_regexes) if ignore_regexes else None

        with progress_bar(f"复制 {Path(folder).name}") as sink:
            entry = create_copy_package(
                folder,
                output,
                version,
                package_name=package_name,
                include=include,
                exclude=exclude,
                archiver=archiver_settings(archiver, level),
                progress=sink,
            )
    except Exception as e:
        report_error(e)

    print_manifest(BuildManifest([entry]))
    console.print(f"[green]✓ 复制包已生成: {entry.output_path}[/green]")
