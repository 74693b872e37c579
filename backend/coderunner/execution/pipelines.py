"""
Language pipelines: how each language is built and run
"""

import re
import sys
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping
from .supervisor import Command
from .errors import UnsupportedLanguage

JAVA_ENTRY_CLASS = "Main"
_PUBLIC_CLASS = re.compile(r"public\s+class\s+\w+")


@dataclass(frozen=True)
class CommandTemplate:
    """
    Program plus argv, with ``{source}``, ``{output}`` and ``{scratch}``
    substituted element by element. Nothing goes through a shell.
    """

    program: str
    args: tuple[str, ...] = ()

    def render(self, cwd: str, **paths: str) -> Command:
        return Command(
            program=self.program.format(**paths),
            args=tuple(a.format(**paths) for a in self.args),
            cwd=cwd,
        )


@dataclass(frozen=True)
class LanguagePipeline:
    language: str
    extension: str
    run: CommandTemplate
    build: CommandTemplate | None = None
    # suffix of the build output, derived from the source path
    output_suffix: str | None = None
    output_is_dir: bool = False
    rewrite: Callable[[str], str] | None = None

    @property
    def compiled(self) -> bool:
        return self.build is not None

    def prepare_source(self, code: str) -> str:
        return self.rewrite(code) if self.rewrite else code


def rename_java_entry_class(code: str) -> str:
    # Dropping "public" lets javac accept a file not named Main.java.
    # Only the first match is rewritten; other references to the old
    # class name are left alone.
    return _PUBLIC_CLASS.sub(f"class {JAVA_ENTRY_CLASS}", code, count=1)


def native_binary_suffix(platform: str | None = None) -> str:
    return ".exe" if (platform or sys.platform) == "win32" else ".out"


def build_registry(settings) -> Mapping[str, LanguagePipeline]:
    pipelines = [
        LanguagePipeline(
            language="python",
            extension="py",
            run=CommandTemplate(settings.PYTHON_BIN, ("-u", "{source}")),
        ),
        LanguagePipeline(
            language="javascript",
            extension="js",
            run=CommandTemplate(settings.NODE_BIN, ("{source}",)),
        ),
        LanguagePipeline(
            language="java",
            extension="java",
            build=CommandTemplate(settings.JAVAC_BIN, ("-d", "{output}", "{source}")),
            run=CommandTemplate(settings.JAVA_BIN, ("-cp", "{output}", JAVA_ENTRY_CLASS)),
            # per-run class directory next to the source
            output_suffix="",
            output_is_dir=True,
            rewrite=rename_java_entry_class,
        ),
        LanguagePipeline(
            language="cpp",
            extension="cpp",
            build=CommandTemplate(settings.CXX_BIN, ("{source}", "-O2", "-o", "{output}")),
            run=CommandTemplate("{output}"),
            output_suffix=native_binary_suffix(),
        ),
    ]
    return MappingProxyType({p.language: p for p in pipelines})


def resolve(registry: Mapping[str, LanguagePipeline], language: str) -> LanguagePipeline:
    try:
        return registry[language]
    except (KeyError, TypeError):
        raise UnsupportedLanguage(str(language)) from None
