"""brewkit - 配方解析与构建编排引擎"""

__version__ = "0.1.0"
