"""
Privacy and hashing utilities for efficiency-cockpit.

Design: タイトル原文を保存しない設定ではハッシュのみを残す
"""

import hashlib
import re
from typing import Optional


def stable_hash(s: str) -> str:
    """
    安定したハッシュ値を生成（プライバシー保護）.

    Args:
        s: ハッシュ化する文字列

    Returns:
        SHA256ハッシュ（16文字）
    """
    return hashlib.sha256(s.encode("utf-8")).hexdigest()[:16]


def content_fingerprint(data: bytes) -> str:
    """
    ファイル内容の変更検知用フィンガープリント.

    Args:
        data: ファイルのバイト列

    Returns:
        SHA256ハッシュ（64文字の16進）
    """
    return hashlib.sha256(data).hexdigest()


def extract_domain(title: Optional[str]) -> Optional[str]:
    """
    ウィンドウタイトルからドメインらしき部分を抽出.

    フルURLは扱わない。

    Args:
        title: ウィンドウタイトル

    Returns:
        ドメイン（見つからない場合はNone）
    """
    if not title:
        return None
    match = re.search(r"([a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,})", title)
    return match.group(1).lower() if match else None


def is_excluded_app(bundle_id: str, excluded: list[str], sensitive_keywords: list[str]) -> bool:
    """
    トラッキング対象外のアプリか判定.

    Args:
        bundle_id: アプリ識別子
        excluded: 除外アプリ識別子リスト
        sensitive_keywords: センシティブキーワードリスト

    Returns:
        除外する場合True
    """
    lower = bundle_id.lower()
    if lower in [b.lower() for b in excluded]:
        return True
    for keyword in sensitive_keywords:
        if keyword.lower() in lower:
            return True
    return False
