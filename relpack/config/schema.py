"""
配置 Schema 定义

使用 Pydantic 定义发布构建配置模型，支持验证和类型检查。
归档后端以 kind 字段区分的标签联合表示。
"""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


_VERSION_PATTERNS = [
    r'^\d+\.\d+\.\d+(?:-[\w\-\.]+)?(?:\+[\w\-\.]+)?$',  # 标准 SemVer
    r'^\d+\.\d+$',                                      # 简单两段式
    r'^\d+\.\d+\.\d+\.\d+$',                            # 四段式
]


def validate_version_string(v: str) -> str:
    """验证版本号格式

    版本号会编码进包文件名（以 _ 分隔），因此不允许包含下划线。
    """
    v = v.strip()
    if '_' in v:
        raise ValueError("版本号不能包含下划线")
    for pattern in _VERSION_PATTERNS:
        if re.match(pattern, v):
            return v
    raise ValueError("版本号格式不正确，支持格式：1.0.0（SemVer）、1.0、1.0.0.0 等")


class ArchiverKind(str, Enum):
    """归档后端类型"""
    ZIP = "zip"
    ARCHIVE = "archive"   # 通用 tar 系列
    ZSTD = "zstd"         # 高压缩比
    NUGET = "nuget"       # 包管理器原生格式
    FOLDER = "folder"     # 不压缩，直接复制为目录


class TarFormat(str, Enum):
    """通用归档格式"""
    TAR = "tar"
    GZTAR = "gztar"
    BZTAR = "bztar"
    XZTAR = "xztar"


class SignaturePolicy(str, Enum):
    """文件内容签名策略"""
    SIZE_HASH = "size_hash"
    SIZE_MTIME = "size_mtime"


class ZipArchiverModel(BaseModel):
    """Zip 归档配置"""
    kind: Literal["zip"] = "zip"
    model_config = {"extra": "forbid"}
    level: int = Field(6, description="压缩级别", ge=0, le=9)


class TarArchiverModel(BaseModel):
    """通用归档配置"""
    kind: Literal["archive"] = "archive"
    model_config = {"extra": "forbid"}
    format: TarFormat = Field(TarFormat.GZTAR, description="归档格式")
    level: int = Field(6, description="压缩级别", ge=0, le=9)

    @model_validator(mode='after')
    def validate_level(self) -> 'TarArchiverModel':
        """bz2 压缩级别最低为 1"""
        if self.format == TarFormat.BZTAR and self.level < 1:
            raise ValueError("bztar 压缩级别必须在 1-9 之间")
        return self


class ZstdArchiverModel(BaseModel):
    """Zstd 高压缩比归档配置"""
    kind: Literal["zstd"] = "zstd"
    model_config = {"extra": "forbid"}
    level: int = Field(19, description="压缩级别", ge=1, le=22)
    threads: int = Field(0, description="压缩线程数（0 表示单线程）", ge=-1)


class NuGetArchiverModel(BaseModel):
    """NuGet 包配置"""
    kind: Literal["nuget"] = "nuget"
    model_config = {"extra": "forbid"}
    authors: str = Field("relpack", description="包作者", min_length=1)
    description: Optional[str] = Field(None, description="包描述", max_length=4000)
    level: int = Field(6, description="压缩级别", ge=0, le=9)


class FolderArchiverModel(BaseModel):
    """目录输出配置（复制包）"""
    kind: Literal["folder"] = "folder"
    model_config = {"extra": "forbid"}


ArchiverSettings = Annotated[
    Union[ZipArchiverModel, TarArchiverModel, ZstdArchiverModel, NuGetArchiverModel, FolderArchiverModel],
    Field(discriminator="kind"),
]


class PackageRequestModel(BaseModel):
    """单个包请求"""
    kind: Literal["full", "delta"] = Field("full", description="包类型")
    version: str = Field(..., description="版本号", min_length=1, max_length=64)
    folder: Path = Field(..., description="要打包的目录")
    previous_version: Optional[str] = Field(None, description="增量包的起始版本")
    previous_folder: Optional[Path] = Field(None, description="增量包的起始版本目录")
    include: Optional[List[str]] = Field(None, description="包含规则（正则，整串匹配）")
    exclude: Optional[List[str]] = Field(None, description="排除规则（正则，整串匹配）")
    include_file: Optional[Path] = Field(None, description="包含规则文件，每行一个正则")
    exclude_file: Optional[Path] = Field(None, description="排除规则文件，每行一个正则")

    model_config = {"extra": "forbid"}

    @field_validator('version', 'previous_version')
    @classmethod
    def validate_version(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return validate_version_string(v)

    @model_validator(mode='after')
    def validate_delta_inputs(self) -> 'PackageRequestModel':
        """增量包必须提供起始版本和目录"""
        if self.kind == "delta":
            if not self.previous_version or self.previous_folder is None:
                raise ValueError("增量包需要 previous_version 和 previous_folder")
            if self.previous_version == self.version:
                raise ValueError("增量包的起始版本与目标版本相同")
        return self


class ConfigModel(BaseModel):
    """配置元信息模型"""
    version: int = Field(1, description="配置 schema 版本", ge=1)

    @field_validator('version')
    @classmethod
    def validate_config_version(cls, v: int) -> int:
        SUPPORTED_VERSIONS = [1]
        if v not in SUPPORTED_VERSIONS:
            raise ValueError(f"不支持的配置版本 {v}，支持的版本: {SUPPORTED_VERSIONS}")
        return v


class ReleaseConfig(BaseModel):
    """发布构建主配置模型"""

    config: ConfigModel = Field(default_factory=ConfigModel, description="配置元信息")

    # 必填部分
    package_name: str = Field(..., description="包名", min_length=1, max_length=100)
    output_folder: Path = Field(..., description="输出目录")
    packages: List[PackageRequestModel] = Field(..., description="要生成的包", min_length=1)

    # 可选部分
    archiver: ArchiverSettings = Field(default_factory=ZipArchiverModel, description="归档后端")
    max_parallelism: int = Field(0, description="最大并行压缩数（0 表示 CPU 核数）", ge=0)
    signature: SignaturePolicy = Field(SignaturePolicy.SIZE_HASH, description="文件内容比较策略")
    existing_packages: List[Path] = Field(default_factory=list, description="已有包文件列表")
    existing_packages_file: Optional[Path] = Field(None, description="已有包列表文件，每行一个路径")
    allow_multiple_reuse: bool = Field(False, description="是否允许同一个已有包被多次复用")
    write_manifest: bool = Field(False, description="是否在输出目录写入 release.json")

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
        "str_strip_whitespace": True,
    }

    @field_validator('package_name')
    @classmethod
    def validate_package_name(cls, v: str) -> str:
        from ..utils.paths import is_safe_filename
        if not is_safe_filename(v):
            raise ValueError(f"包名不能用作文件名: {v}")
        return v

    @model_validator(mode='after')
    def validate_unique_packages(self) -> 'ReleaseConfig':
        """同一配置中不能重复请求同一个包"""
        seen = set()
        for request in self.packages:
            key = (request.kind, request.version, request.previous_version)
            if key in seen:
                raise ValueError(f"重复的包请求: {request.kind} {request.version}")
            seen.add(key)
        return self

    def resolved_parallelism(self) -> int:
        """解析最大并行数（0 表示主机 CPU 核数）"""
        return resolve_parallelism(self.max_parallelism)

    def to_dict(self) -> Dict[str, Any]:
        """转换为可序列化的字典"""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReleaseConfig':
        """从字典创建配置实例"""
        return cls.model_validate(data)


def resolve_parallelism(value: Optional[int]) -> int:
    """0 或 None 表示使用主机可用的处理器数量"""
    if not value or value < 1:
        return os.cpu_count() or 1
    return value
