"""
File system access for the content indexer.

インデクサーはこのモジュールの walk() / read_bytes() / stat() だけを使う。
テストでは同じインターフェースを持つオブジェクトに差し替えられる。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileInfo:
    """走査で見つかったファイル"""

    path: str
    size: int
    modified_time: datetime


class LocalFileSystem:
    """
    ローカルファイルシステム

    除外ディレクトリと隠しファイル・隠しディレクトリは走査しない。
    """

    def __init__(self, skip_directories: Optional[Iterable[str]] = None):
        """
        Args:
            skip_directories: 走査しないディレクトリ名
        """
        self.skip_directories = frozenset(skip_directories or ())

    def walk(self, root: str) -> Iterator[FileInfo]:
        """
        プロジェクトルート配下の通常ファイルを列挙

        Args:
            root: 走査するディレクトリ

        Yields:
            FileInfo
        """
        for dirpath, dirnames, filenames in os.walk(root, onerror=self._on_walk_error):
            dirnames[:] = sorted(
                d for d in dirnames if d not in self.skip_directories and not d.startswith(".")
            )
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                info = self.stat(os.path.join(dirpath, name))
                if info is not None:
                    yield info

    def stat(self, path: str) -> Optional[FileInfo]:
        """通常ファイルなら FileInfo を返す（存在しない・通常ファイルでなければ None）"""
        try:
            st = os.stat(path)
        except OSError:
            return None
        if not os.path.isfile(path):
            return None
        return FileInfo(
            path=path,
            size=st.st_size,
            modified_time=datetime.fromtimestamp(st.st_mtime),
        )

    def read_bytes(self, path: str) -> bytes:
        """
        ファイル内容を読み込む

        Raises:
            OSError: 読み込みに失敗した場合
        """
        return Path(path).read_bytes()

    @staticmethod
    def _on_walk_error(error: OSError) -> None:
        logger.warning(f"Cannot list directory {error.filename}: {error}")


def discover_projects(
    search_paths: Iterable[str],
    max_depth: int = 3,
    skip_directories: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    検索パス配下の git リポジトリを探す

    ".git" を含むディレクトリを見つけたらそれより下は探さない。

    Args:
        search_paths: 探索の起点ディレクトリ
        max_depth: 起点からの最大深さ
        skip_directories: 探索しないディレクトリ名

    Returns:
        見つかったリポジトリのパス
    """
    skip = frozenset(skip_directories or ())
    projects: List[str] = []

    def find(path: Path, depth: int) -> None:
        if depth <= 0:
            return
        try:
            children = sorted(path.iterdir())
        except OSError:
            return

        if any(child.name == ".git" for child in children):
            projects.append(str(path))
            return

        for child in children:
            if child.name in skip or child.name.startswith("."):
                continue
            if child.is_dir():
                find(child, depth - 1)

    for base in search_paths:
        find(Path(base).expanduser(), max_depth)

    return projects
