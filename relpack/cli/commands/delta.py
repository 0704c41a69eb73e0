"""
Delta 命令实现

比较两个版本目录，生成只包含变更文件的增量包。
"""

from typing import Optional

import typer

from ...build.models import BuildManifest
from ...config import SignaturePolicy, read_lines
from .common import (
    ArchiverChoice,
    archiver_settings,
    console,
    print_manifest,
    progress_bar,
    report_error,
    setup_logging,
)


def delta_command(
    folder: str = typer.Option(..., "--folder", "-f", help="新版本目录"),
    last_folder: str = typer.Option(..., "--last-folder", "-l", help="上一版本目录"),
    output: str = typer.Option(..., "--output", "-o", help="输出目录"),
    version: str = typer.Option(..., "--version", help="新版本号"),
    last_version: str = typer.Option(..., "--last-version", help="上一版本号"),
    package_name: str = typer.Option("package", "--package-name", "-n", help="包名"),
    include_regexes: Optional[str] = typer.Option(None, "--include-regexes", help="包含规则文件，每行一个正则"),
    ignore_regexes: Optional[str] = typer.Option(None, "--ignore-regexes", help="排除规则文件，每行一个正则"),
    archiver: ArchiverChoice = typer.Option(ArchiverChoice.ZIP, "--archiver", "-a", help="归档后端"),
    level: Optional[int] = typer.Option(None, "--level", help="压缩级别"),
    signature: SignaturePolicy = typer.Option(SignaturePolicy.SIZE_HASH, "--signature", help="文件内容比较策略"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="日志输出文件"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出详细调试日志 (DEBUG 级别)"),
) -> None:
    """生成增量包

    示例:
        relpack delta -f ./v2 -l ./v1 -o ./out --version 2.0.0 --last-version 1.0.0
    """
    from ...build.builder import create_delta_package

    setup_logging(verbose, log_file)

    try:
        include = read_lines(include_regexes) if include_regexes else None
        exclude = read_lines(ignore_regexes) if ignore_regexes else None

        with progress_bar(f"增量 {last_version} -> {version}") as sink:
            entry = create_delta_package(
                last_folder,
                folder,
                output,
                last_version,
                version,
                package_name=package_name,
                include=include,
                exclude=exclude,
                archiver=archiver_settings(archiver, level),
                signature=signature,
                progress=sink,
            )
    except Exception as e:
        report_error(e)

    print_manifest(BuildManifest([entry]))
    console.print(f"[green]✓ 增量包已生成: {entry.output_path}[/green]")
