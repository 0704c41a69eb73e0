"""
Validate 命令实现

验证发布配置文件。
"""

import json
from pathlib import Path

import typer
from rich.table import Table

from ...config import ConfigError, validate_config
from .common import console


def validate_command(
    config: str = typer.Option(..., "--config", "-c", help="配置文件路径"),
    json_output: bool = typer.Option(False, "--json", help="输出 JSON 格式的错误信息"),
) -> None:
    """验证配置文件

    示例:
        relpack validate -c release.yaml
        relpack validate -c release.yaml --json
    """
    config_path = Path(config)

    if not config_path.exists():
        console.print(f"[red]配置文件不存在: {config_path}[/red]")
        raise typer.Exit(1)

    try:
        errors = validate_config(config_path)
    except ConfigError as e:
        if json_output:
            data = {"file": str(config_path), "error": str(e), "error_type": "config_error"}
            console.print(json.dumps(data, ensure_ascii=False, indent=2))
        else:
            console.print(f"[red]配置错误: {e}[/red]")
        raise typer.Exit(1)

    if not errors:
        console.print("[green]✓ 配置文件验证通过[/green]")
        return

    if json_output:
        data = {"file": str(config_path), "errors": errors, "error_count": len(errors)}
        console.print(json.dumps(data, ensure_ascii=False, indent=2, default=str))
    else:
        console.print(f"[red]配置文件验证失败 ({len(errors)} 个错误):[/red]")
        table = Table(title="验证错误")
        table.add_column("位置", style="cyan", no_wrap=True)
        table.add_column("错误信息", style="red")
        table.add_column("输入值", style="yellow")

        for item in errors:
            location = " -> ".join(str(part) for part in item.get('loc', []))
            input_value = str(item.get('input', ''))
            if len(input_value) > 47:
                input_value = input_value[:47] + "..."
            table.add_row(location or "根级别", item.get('msg', '未知错误'), input_value or "-")

        console.print(table)

    raise typer.Exit(1)
