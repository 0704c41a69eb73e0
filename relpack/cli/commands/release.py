"""
Release 命令实现

按配置文件构建全部发布包。
"""

from pathlib import Path
from typing import Optional

import typer

from ...config import load_config
from .common import console, print_manifest, progress_bar, report_error, setup_logging


def release_command(
    config: str = typer.Option(..., "--config", "-c", help="配置文件路径"),
    max_parallelism: Optional[int] = typer.Option(
        None, "--max-parallelism", "-j", min=0, help="最大并行压缩数（0 表示 CPU 核数）"
    ),
    manifest: bool = typer.Option(False, "--manifest", help="在输出目录写入 release.json"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="日志输出文件"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出详细调试日志 (DEBUG 级别)"),
) -> None:
    """构建发布包

    示例:
        relpack release -c release.yaml
        relpack release -c release.yaml -j 2 --manifest
    """
    from ...build.builder import ReleaseBuilder

    setup_logging(verbose, log_file)
    config_path = Path(config)

    try:
        console.print(f"[cyan]正在加载配置文件[/cyan]: {config_path}")
        config_obj = load_config(config_path)

        if max_parallelism is not None:
            config_obj.max_parallelism = max_parallelism
        if manifest:
            config_obj.write_manifest = True

        with progress_bar(f"构建 {config_obj.package_name}") as sink:
            result = ReleaseBuilder(config_obj).build(progress=sink)
    except Exception as e:
        report_error(e)

    print_manifest(result)
    console.print(f"[green]✓ 发布包已生成: {config_obj.output_folder}[/green]")
