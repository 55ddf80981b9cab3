"""
ファイル種別・言語判定テーブル.

拡張子 → 種別 / 表示用言語名の対応はプロセス起動時に一度だけ構築し、
以降は変更しない（frozenset / MappingProxyType）。
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class ContentFileType(str, Enum):
    """インデックス対象ファイルの種別"""

    CODE = "code"
    DOCUMENTATION = "documentation"
    CONFIGURATION = "configuration"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


CODE_EXTENSIONS: frozenset[str] = frozenset(
    [
        "swift", "ts", "tsx", "js", "jsx", "py", "go", "rs",
        "java", "kt", "rb", "c", "cpp", "h", "hpp", "cs",
        "php", "scala", "clj", "ex", "exs", "hs", "ml",
        "vue", "svelte", "astro", "lua", "r", "jl", "zig",
        "nim", "dart", "groovy", "perl", "sh", "bash", "zsh",
    ]
)

DOCUMENTATION_EXTENSIONS: frozenset[str] = frozenset(
    ["md", "markdown", "txt", "rst", "adoc", "org", "tex", "html", "htm", "asciidoc"]
)

CONFIGURATION_EXTENSIONS: frozenset[str] = frozenset(
    [
        "json", "yaml", "yml", "toml", "xml", "plist",
        "ini", "conf", "config", "env", "properties",
        "editorconfig", "gitignore", "dockerignore",
    ]
)

LANGUAGE_BY_EXTENSION: Mapping[str, str] = MappingProxyType(
    {
        # Languages
        "swift": "Swift",
        "ts": "TypeScript", "tsx": "TypeScript",
        "js": "JavaScript", "jsx": "JavaScript",
        "py": "Python",
        "go": "Go",
        "rs": "Rust",
        "java": "Java",
        "kt": "Kotlin", "kts": "Kotlin",
        "rb": "Ruby",
        "c": "C",
        "cpp": "C++", "cc": "C++", "cxx": "C++",
        "h": "C/C++ Header", "hpp": "C++ Header",
        "cs": "C#",
        "php": "PHP",
        "scala": "Scala",
        "clj": "Clojure", "cljs": "ClojureScript",
        "ex": "Elixir", "exs": "Elixir",
        "hs": "Haskell",
        "ml": "OCaml",
        "vue": "Vue",
        "svelte": "Svelte",
        "lua": "Lua",
        "r": "R",
        "jl": "Julia",
        "zig": "Zig",
        "nim": "Nim",
        "dart": "Dart",
        "groovy": "Groovy",
        "perl": "Perl", "pl": "Perl",
        "sh": "Shell", "bash": "Bash", "zsh": "Zsh",
        # Markup/Data
        "md": "Markdown", "markdown": "Markdown",
        "json": "JSON",
        "yaml": "YAML", "yml": "YAML",
        "toml": "TOML",
        "xml": "XML",
        "html": "HTML", "htm": "HTML",
        "css": "CSS",
        "scss": "SCSS",
        "sass": "Sass",
        "less": "Less",
    }
)


def detect_file_type(extension: str) -> ContentFileType:
    """
    拡張子からファイル種別を判定（大文字小文字は区別しない）.

    Args:
        extension: 拡張子（先頭のドットなし）

    Returns:
        ファイル種別（未登録は OTHER）
    """
    lower = extension.lower()
    if lower in CODE_EXTENSIONS:
        return ContentFileType.CODE
    if lower in DOCUMENTATION_EXTENSIONS:
        return ContentFileType.DOCUMENTATION
    if lower in CONFIGURATION_EXTENSIONS:
        return ContentFileType.CONFIGURATION
    return ContentFileType.OTHER


def detect_language(extension: str) -> Optional[str]:
    """拡張子から言語の表示名を返す（未登録は None）."""
    return LANGUAGE_BY_EXTENSION.get(extension.lower())
