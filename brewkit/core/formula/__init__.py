"""配方处理模块

拆分说明:
- catalog.py: 配方目录加载与解析
- resolver.py: 依赖图拓扑排序
- fetcher.py: 内容寻址的资源拉取
"""

from brewkit.core.formula.catalog import FormulaCatalog, formula_from_dict
from brewkit.core.formula.fetcher import ResourceFetcher, Transport, UrllibTransport
from brewkit.core.formula.resolver import DependencyResolver

__all__ = [
    "FormulaCatalog",
    "formula_from_dict",
    "DependencyResolver",
    "ResourceFetcher",
    "Transport",
    "UrllibTransport",
]
