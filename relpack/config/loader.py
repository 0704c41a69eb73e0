"""
配置加载器

负责从 YAML 文件加载发布配置并进行验证，以及读取规则列表文件。
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..errors import NotFoundError
from .schema import PackageRequestModel, ReleaseConfig


class ConfigError(Exception):
    """配置错误基类"""
    pass


class ConfigValidationError(ConfigError):
    """配置验证错误"""

    def __init__(self, message: str, errors: List[Dict[str, Any]]):
        super().__init__(message)
        self.errors = errors

    def format_errors(self) -> str:
        """格式化错误信息为人类可读的格式"""
        formatted = []
        for error in self.errors:
            loc = " -> ".join(str(item) for item in error.get('loc', []))
            msg = error.get('msg', '未知错误')

            if loc:
                formatted.append(f"字段 '{loc}': {msg}")
            else:
                formatted.append(f"根级别: {msg}")

        return "\n".join(formatted)

    def format_errors_json(self) -> str:
        """格式化错误信息为 JSON 格式"""
        return json.dumps(self.errors, ensure_ascii=False, indent=2, default=str)


def read_lines(path: Union[str, Path]) -> List[str]:
    """读取按行分隔的列表文件（正则规则或路径列表）

    只去掉行尾换行符，其余空白原样保留（空格在正则中有意义）；
    全为空白的行被忽略。

    Raises:
        NotFoundError: 文件不存在
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"列表文件不存在: {path}", path)

    with open(path, 'r', encoding='utf-8-sig') as f:
        return [line.rstrip('\r\n') for line in f if line.strip()]


def resolve_patterns(request: PackageRequestModel) -> Tuple[Optional[List[str]], Optional[List[str]]]:
    """合并包请求中的内联规则与规则文件

    Returns:
        (include, exclude)，未配置的一侧为 None
    """
    include = list(request.include) if request.include is not None else None
    exclude = list(request.exclude) if request.exclude is not None else None

    if request.include_file is not None:
        include = (include or []) + read_lines(request.include_file)
    if request.exclude_file is not None:
        exclude = (exclude or []) + read_lines(request.exclude_file)

    return include, exclude


def resolve_existing_packages(config: ReleaseConfig) -> List[Path]:
    """合并配置中的已有包列表与列表文件"""
    paths = list(config.existing_packages)
    if config.existing_packages_file is not None:
        paths.extend(Path(line.strip()) for line in read_lines(config.existing_packages_file))
    return paths


class ConfigLoader:
    """配置加载器"""

    # 需要相对配置文件目录解析的字段
    _ROOT_PATH_FIELDS = ('output_folder', 'existing_packages_file')
    _REQUEST_PATH_FIELDS = ('folder', 'previous_folder', 'include_file', 'exclude_file')

    def __init__(self):
        self.yaml = YAML(typ="safe")
        self.yaml.width = 4096  # 避免长行自动换行

    def load_from_file(self, config_path: Union[str, Path]) -> ReleaseConfig:
        """从文件加载配置

        Args:
            config_path: 配置文件路径

        Returns:
            ReleaseConfig: 验证后的配置实例

        Raises:
            ConfigError: 配置加载或验证错误
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigError(f"配置文件不存在: {config_path}")

        if not config_path.is_file():
            raise ConfigError(f"配置路径不是文件: {config_path}")

        if config_path.suffix.lower() not in ('.yaml', '.yml'):
            raise ConfigError(f"配置文件必须是 .yaml 或 .yml 格式: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                raw_data = self.yaml.load(f)
        except YAMLError as e:
            raise ConfigError(f"YAML 解析错误: {e}") from e
        except OSError as e:
            raise ConfigError(f"文件读取错误: {e}") from e

        if raw_data is None:
            raise ConfigError("配置文件为空")

        if not isinstance(raw_data, dict):
            raise ConfigError("配置文件根级别必须是对象/字典格式")

        return self.load_from_dict(raw_data, config_path.parent.resolve())

    def load_from_dict(self, data: Dict[str, Any], base_path: Optional[Path] = None) -> ReleaseConfig:
        """从字典加载配置

        Args:
            data: 配置数据字典
            base_path: 相对路径的基准路径

        Raises:
            ConfigValidationError: 配置验证错误
        """
        if base_path:
            data = json.loads(json.dumps(data, default=str))  # 深拷贝
            self._resolve_relative_paths(data, base_path)

        try:
            return ReleaseConfig.from_dict(data)
        except ValidationError as e:
            raise ConfigValidationError("配置验证失败", e.errors()) from e

    def save_to_file(self, config: ReleaseConfig, output_path: Union[str, Path]) -> None:
        """保存配置到 YAML 文件"""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        writer = YAML()
        writer.default_flow_style = False
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                writer.dump(config.to_dict(), f)
        except OSError as e:
            raise ConfigError(f"保存配置文件失败: {e}") from e

    def validate_file(self, config_path: Union[str, Path]) -> List[Dict[str, Any]]:
        """验证配置文件并返回错误列表，空列表表示验证通过"""
        try:
            self.load_from_file(config_path)
            return []
        except ConfigValidationError as e:
            return e.errors
        except ConfigError as e:
            return [{'loc': [], 'msg': str(e), 'type': 'config_error'}]

    def _resolve_relative_paths(self, data: Dict[str, Any], base_path: Path) -> None:
        """将配置中的相对路径解析为相对配置文件目录的绝对路径"""
        for key in self._ROOT_PATH_FIELDS:
            if key in data:
                data[key] = self._absolute(data[key], base_path)

        if isinstance(data.get('existing_packages'), list):
            data['existing_packages'] = [self._absolute(p, base_path) for p in data['existing_packages']]

        if isinstance(data.get('packages'), list):
            for request in data['packages']:
                if not isinstance(request, dict):
                    continue
                for key in self._REQUEST_PATH_FIELDS:
                    if key in request:
                        request[key] = self._absolute(request[key], base_path)

    @staticmethod
    def _absolute(value: Any, base_path: Path) -> Any:
        if isinstance(value, str) and value and not Path(value).is_absolute():
            return str((base_path / value).resolve())
        return value


# 全局加载器实例
config_loader = ConfigLoader()


def load_config(config_path: Union[str, Path]) -> ReleaseConfig:
    """便捷函数：加载配置文件"""
    return config_loader.load_from_file(config_path)


def validate_config(config_path: Union[str, Path]) -> List[Dict[str, Any]]:
    """便捷函数：验证配置文件"""
    return config_loader.validate_file(config_path)


def save_config(config: ReleaseConfig, output_path: Union[str, Path]) -> None:
    """便捷函数：保存配置文件"""
    config_loader.save_to_file(config, output_path)
