"""配方目录

职责:
- 从目录加载配方 YAML 文件（每个文件一个配方）
- 把原始字典解析为只读 Formula，并校验不变量
- 提供 get(name) 查找能力，供依赖解析器使用

配方文件示例:

    name: openconnect-keychain
    head: {url: https://github.com/brandt/openconnect.git, branch: devel}
    dependencies:
      - autoconf: build
      - gettext
      - {name: stoken, kind: optional}
    resources:
      vpnc-script: {url: http://..., sha256: cc30b7...}
    build_steps:
      - install -m 0755 {resource:vpnc-script} {etc}/vpnc-script
      - run: ./autogen.sh
        env: {LIBTOOLIZE: glibtoolize}
    test:
      run: "{bin}/openconnect-keychain"
      match: AnyConnect VPN
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml

from brewkit.core.exceptions import FormulaNotFound, ValidationError
from brewkit.core.models import (
    BuildStep,
    Dependency,
    DepKind,
    Formula,
    Resource,
    Source,
    TestStep,
    VersionSpec,
)
from brewkit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

FORMULA_SUFFIXES = (".yml", ".yaml")


# =========================================================================
# 字典 -> Formula
# =========================================================================


def _parse_kind(name: str, raw: Any) -> DepKind:
    try:
        return DepKind(str(raw or DepKind.RUNTIME.value))
    except ValueError:
        raise ValidationError(
            f"依赖 {name} 的类型无效: {raw}，"
            f"可选: {', '.join(k.value for k in DepKind)}"
        ) from None


def _parse_dependency(entry: Any) -> Dependency:
    """支持三种写法: "gettext" / {autoconf: build} / {name: x, kind: optional}"""
    if isinstance(entry, str):
        return Dependency(name=entry)
    if isinstance(entry, dict):
        if "name" in entry:
            return Dependency(str(entry["name"]), _parse_kind(entry["name"], entry.get("kind")))
        if len(entry) == 1:
            name, kind = next(iter(entry.items()))
            return Dependency(str(name), _parse_kind(name, kind))
    raise ValidationError(f"无法解析依赖声明: {entry!r}")


def _parse_resources(raw: Any) -> tuple[Resource, ...]:
    if not raw:
        return ()
    items: Iterable[tuple[str, dict[str, Any]]]
    if isinstance(raw, dict):
        items = raw.items()
    elif isinstance(raw, list):
        bad = [r for r in raw if not isinstance(r, dict)]
        if bad:
            raise ValidationError(f"resources 列表项必须是映射: {bad[0]!r}")
        items = [(r.get("name", ""), r) for r in raw]
    else:
        raise ValidationError(f"resources 必须是映射或列表: {raw!r}")
    for name, info in items:
        if not isinstance(info, dict):
            raise ValidationError(f"资源 {name} 必须是映射: {info!r}")
    return tuple(
        Resource(name=str(name), url=info.get("url", ""), sha256=info.get("sha256", ""))
        for name, info in items
    )


def _parse_step(raw: Any) -> BuildStep:
    if isinstance(raw, str):
        return BuildStep(command=raw)
    if isinstance(raw, dict) and "run" in raw:
        env = {str(k): str(v) for k, v in (raw.get("env") or {}).items()}
        return BuildStep(command=str(raw["run"]), env=env)
    raise ValidationError(f"无法解析构建步骤: {raw!r}")


def _parse_version(data: dict[str, Any]) -> tuple[VersionSpec, Source | None]:
    """url/sha256/version 为固定版本，head 段为分支跟踪版本

    两者同时存在时默认使用固定版本，head=True 强制走 HEAD。
    """
    head = data.get("head")
    prefer_head = data.get("use_head", False) or not data.get("version")
    if head and prefer_head:
        if isinstance(head, str):
            head = {"url": head}
        elif not isinstance(head, dict):
            raise ValidationError(f"head 必须是 URL 或映射: {head!r}")
        return (
            VersionSpec(head=True, branch=head.get("branch", "")),
            Source(url=head["url"]) if head.get("url") else None,
        )
    version = VersionSpec(version=str(data.get("version", "")))
    source = None
    if data.get("url"):
        source = Source(url=data["url"], sha256=data.get("sha256", ""))
    return version, source


def formula_from_dict(data: dict[str, Any]) -> Formula:
    """把原始字典解析为 Formula 并校验"""
    name = str(data.get("name", "")).strip()
    if not name:
        raise ValidationError("配方缺少 name")
    version, source = _parse_version(data)
    test = data.get("test")
    test_step = None
    if test:
        if isinstance(test, str):
            test_step = TestStep(command=test)
        elif not isinstance(test, dict) or "run" not in test:
            raise ValidationError(f"配方 {name} 的 test 必须是命令或包含 run 的映射: {test!r}")
        else:
            test_step = TestStep(command=str(test["run"]), match=str(test.get("match", "")))

    formula = Formula(
        name=name,
        version_spec=version,
        dependencies=tuple(_parse_dependency(d) for d in data.get("dependencies") or []),
        resources=_parse_resources(data.get("resources")),
        build_steps=tuple(_parse_step(s) for s in data.get("build_steps") or []),
        test_step=test_step,
        source=source,
        desc=data.get("desc", ""),
        homepage=data.get("homepage", ""),
    )
    formula.validate()
    return formula


# =========================================================================
# 目录
# =========================================================================


class FormulaCatalog:
    """配方目录 — 名称唯一"""

    def __init__(self, formulae: Iterable[Formula] = ()) -> None:
        self._formulae: dict[str, Formula] = {}
        for f in formulae:
            self.add(f)

    @classmethod
    def from_dir(cls, catalog_dir: str | Path) -> FormulaCatalog:
        """加载目录下所有 .yml/.yaml 配方文件（按文件名排序）"""
        base = Path(catalog_dir)
        catalog = cls()
        if not base.is_dir():
            logger.warning("配方目录不存在: %s", base)
            return catalog
        for path in sorted(base.iterdir()):
            if path.suffix not in FORMULA_SUFFIXES or path.name.startswith("."):
                continue
            try:
                data = load_yaml(path, strict=True)
            except (yaml.YAMLError, ValueError) as e:
                raise ValidationError(f"配方文件无法解析: {path} - {e}") from e
            catalog.add(formula_from_dict(data))
        logger.info("已加载 %d 个配方: %s", len(catalog), base)
        return catalog

    @classmethod
    def from_mapping(cls, data: dict[str, dict[str, Any]]) -> FormulaCatalog:
        """从 {name: 字典} 构造，name 字段缺省时取键名"""
        return cls(
            formula_from_dict({"name": name, **(info or {})})
            for name, info in data.items()
        )

    def add(self, formula: Formula) -> None:
        if formula.name in self._formulae:
            raise ValidationError(f"配方名称重复: {formula.name}")
        self._formulae[formula.name] = formula

    def get(self, name: str) -> Formula:
        """查找配方，不存在抛 FormulaNotFound"""
        try:
            return self._formulae[name]
        except KeyError:
            raise FormulaNotFound(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._formulae

    def __iter__(self) -> Iterator[Formula]:
        return iter(self._formulae.values())

    def __len__(self) -> int:
        return len(self._formulae)

    def list_formulae(self) -> list[dict[str, str]]:
        """格式化列表用于查询"""
        return [
            {
                "name": f.name,
                "version": str(f.version_spec),
                "desc": f.desc,
                "dependencies": ", ".join(
                    d.name if d.kind is DepKind.RUNTIME else f"{d.name}({d.kind.value})"
                    for d in f.dependencies
                ),
            }
            for f in self._formulae.values()
        ]
