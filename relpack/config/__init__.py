"""配置和 Schema 模块

提供 YAML 发布配置的加载、验证和保存功能。
"""

from .schema import (
    ArchiverKind,
    ArchiverSettings,
    FolderArchiverModel,
    NuGetArchiverModel,
    PackageRequestModel,
    ReleaseConfig,
    SignaturePolicy,
    TarArchiverModel,
    TarFormat,
    ZipArchiverModel,
    ZstdArchiverModel,
    resolve_parallelism,
)
from .loader import (
    ConfigLoader,
    ConfigValidationError,
    ConfigError,
    load_config,
    validate_config,
    save_config,
    read_lines,
    resolve_patterns,
    resolve_existing_packages,
    config_loader,
)

__all__ = [
    # 主要类
    "ReleaseConfig",
    "PackageRequestModel",
    "ConfigLoader",

    # 归档后端
    "ArchiverKind",
    "ArchiverSettings",
    "ZipArchiverModel",
    "TarArchiverModel",
    "TarFormat",
    "ZstdArchiverModel",
    "NuGetArchiverModel",
    "FolderArchiverModel",
    "SignaturePolicy",

    # 异常类
    "ConfigError",
    "ConfigValidationError",

    # 便捷函数
    "load_config",
    "validate_config",
    "save_config",
    "read_lines",
    "resolve_patterns",
    "resolve_existing_packages",
    "resolve_parallelism",

    # 单例
    "config_loader",
]
