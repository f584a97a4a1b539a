"""安装回执存储

持久化 name -> 回执 的映射，使重复安装成为空操作并支持卸载。

文件格式 (YAML):
    receipts:
      gettext:
        version_spec: "0.22"
        installed_paths: [local/Cellar/gettext/0.22]
        timestamp: 1700000000.123
        build_options_used: {with: [], head: false}

写入串行化（单写者锁）并原子落盘；读取失败抛 ReceiptCorrupt。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import yaml

from brewkit.core.exceptions import ReceiptCorrupt
from brewkit.core.models import Receipt
from brewkit.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

SECTION_KEY = "receipts"


class InstallationStore:
    """安装回执存储"""

    def __init__(self, receipts_file: str | Path) -> None:
        self.receipts_file = Path(receipts_file)
        self._lock = threading.Lock()
        self._receipts: dict[str, Receipt] = self._load()

    def _load(self) -> dict[str, Receipt]:
        try:
            data = load_yaml(self.receipts_file, strict=True)
        except (yaml.YAMLError, ValueError, OSError) as e:
            raise ReceiptCorrupt(f"回执文件无法读取: {self.receipts_file} - {e}") from e

        section = data.get(SECTION_KEY) or {}
        if not isinstance(section, dict):
            raise ReceiptCorrupt(f"回执文件格式错误: {self.receipts_file}")
        receipts: dict[str, Receipt] = {}
        for name, entry in section.items():
            try:
                receipts[str(name)] = Receipt.from_dict(str(name), entry)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ReceiptCorrupt(f"回执条目损坏: {name} - {e}") from e
        return receipts

    def _commit(self, receipts: dict[str, Receipt]) -> None:
        """先落盘再替换内存映射，写盘失败时内存保持原状"""
        payload: dict[str, Any] = {
            SECTION_KEY: {n: r.to_dict() for n, r in receipts.items()},
        }
        save_yaml(self.receipts_file, payload)
        self._receipts = receipts

    def record(self, receipt: Receipt) -> None:
        """写入回执；同名回执被替换（升级语义）"""
        with self._lock:
            previous = self._receipts.get(receipt.name)
            self._commit({**self._receipts, receipt.name: receipt})
        if previous and previous.version_spec != receipt.version_spec:
            logger.info(
                "回执已更新: %s %s -> %s",
                receipt.name, previous.version_spec, receipt.version_spec,
            )
        else:
            logger.info("回执已记录: %s@%s", receipt.name, receipt.version_spec)

    def lookup(self, name: str) -> Receipt | None:
        with self._lock:
            return self._receipts.get(name)

    def remove(self, name: str) -> bool:
        with self._lock:
            if name not in self._receipts:
                return False
            self._commit({n: r for n, r in self._receipts.items() if n != name})
        logger.info("回执已删除: %s", name)
        return True

    def list_all(self) -> list[Receipt]:
        with self._lock:
            return list(self._receipts.values())
