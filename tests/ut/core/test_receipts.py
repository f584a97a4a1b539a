"""安装回执存储单元测试"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from brewkit.core.exceptions import ReceiptCorrupt
from brewkit.core.models import Receipt
from brewkit.core.receipts import InstallationStore


def _receipt(name: str = "gettext", version: str = "0.22") -> Receipt:
    return Receipt(
        name=name, version_spec=version,
        installed_paths=[f"/opt/brewkit/Cellar/{name}/{version}"],
        timestamp=1700000000.0,
        build_options_used={"with": [], "head": False},
    )


class TestInstallationStore:
    def test_empty_when_missing(self, tmp_path: Path) -> None:
        store = InstallationStore(tmp_path / "receipts.yml")
        assert store.list_all() == []
        assert store.lookup("gettext") is None

    def test_record_and_lookup(self, tmp_path: Path) -> None:
        store = InstallationStore(tmp_path / "receipts.yml")
        store.record(_receipt())
        assert store.lookup("gettext") == _receipt()

    def test_record_replaces(self, tmp_path: Path) -> None:
        store = InstallationStore(tmp_path / "receipts.yml")
        store.record(_receipt(version="0.21"))
        store.record(_receipt(version="0.22"))
        assert [r.version_spec for r in store.list_all()] == ["0.22"]

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "var" / "receipts.yml"
        InstallationStore(path).record(_receipt())
        InstallationStore(path).record(_receipt("gnutls", "3.8"))
        reopened = InstallationStore(path)
        assert {r.name for r in reopened.list_all()} == {"gettext", "gnutls"}
        assert reopened.lookup("gettext") == _receipt()

    def test_remove(self, tmp_path: Path) -> None:
        path = tmp_path / "receipts.yml"
        store = InstallationStore(path)
        store.record(_receipt())
        assert store.remove("gettext") is True
        assert store.remove("gettext") is False
        assert InstallationStore(path).lookup("gettext") is None

    def test_failed_save_keeps_memory_unchanged(self, tmp_path: Path) -> None:
        path = tmp_path / "receipts.yml"
        store = InstallationStore(path)
        store.record(_receipt(version="0.21"))
        with patch("brewkit.core.receipts.save_yaml", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.record(_receipt(version="0.22"))
            with pytest.raises(OSError):
                store.record(_receipt("gnutls", "3.8"))
            with pytest.raises(OSError):
                store.remove("gettext")
        assert store.lookup("gettext").version_spec == "0.21"
        assert store.lookup("gnutls") is None
        assert InstallationStore(path).lookup("gettext").version_spec == "0.21"


class TestCorruptReceipts:
    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "receipts.yml"
        path.write_text("receipts: [unclosed", encoding="utf-8")
        with pytest.raises(ReceiptCorrupt):
            InstallationStore(path)

    def test_non_mapping_document(self, tmp_path: Path) -> None:
        path = tmp_path / "receipts.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ReceiptCorrupt):
            InstallationStore(path)

    def test_broken_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "receipts.yml"
        path.write_text("receipts:\n  gettext: just-a-string\n", encoding="utf-8")
        with pytest.raises(ReceiptCorrupt, match="gettext"):
            InstallationStore(path)
