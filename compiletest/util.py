"""Target-triple helpers and small platform queries."""

from __future__ import annotations

import sys

from .errors import ConfigError

OS_TABLE: tuple[tuple[str, str], ...] = (
    ("android", "android"),
    ("bitrig", "bitrig"),
    ("cloudabi", "cloudabi"),
    ("darwin", "macos"),
    ("dragonfly", "dragonfly"),
    ("emscripten", "emscripten"),
    ("freebsd", "freebsd"),
    ("fuchsia", "fuchsia"),
    ("haiku", "haiku"),
    ("ios", "ios"),
    ("l4re", "l4re"),
    ("linux", "linux"),
    ("mingw32", "windows"),
    ("netbsd", "netbsd"),
    ("openbsd", "openbsd"),
    ("redox", "redox"),
    ("solaris", "solaris"),
    ("win32", "windows"),
    ("windows", "windows"),
)

ARCH_TABLE: tuple[tuple[str, str], ...] = (
    ("aarch64", "aarch64"),
    ("amd64", "x86_64"),
    ("arm", "arm"),
    ("arm64", "aarch64"),
    ("hexagon", "hexagon"),
    ("i386", "x86"),
    ("i586", "x86"),
    ("i686", "x86"),
    ("mips", "mips"),
    ("msp430", "msp430"),
    ("powerpc", "powerpc"),
    ("powerpc64", "powerpc64"),
    ("s390x", "s390x"),
    ("sparc", "sparc"),
    ("x86_64", "x86_64"),
    ("xcore", "xcore"),
    ("asmjs", "asmjs"),
    ("wasm32", "wasm32"),
)

ANDROID_TARGETS = frozenset(
    {"arm-linux-androideabi", "armv7-linux-androideabi", "aarch64-linux-android"}
)
BSD_HOST_MARKERS = ("bitrig", "dragonfly", "freebsd", "netbsd", "openbsd")


def matches_os(triple: str, name: str) -> bool:
    # The bare wasm target has no OS component; it answers to everything
    # ignored on emscripten plus its own `wasm32-bare` name.
    if triple == "wasm32-unknown-unknown":
        return name in {"emscripten", "wasm32-bare"}
    components = triple.split("-")
    for triple_os, os_name in OS_TABLE:
        if triple_os in components:
            return os_name == name
    raise ConfigError(f"Cannot determine OS from triple {triple!r}")


def get_arch(triple: str) -> str:
    components = triple.split("-")
    for triple_arch, arch in ARCH_TABLE:
        if triple_arch in components:
            return arch
    raise ConfigError(f"Cannot determine architecture from triple {triple!r}")


def get_env(triple: str) -> str | None:
    components = triple.split("-")
    if len(components) > 3:
        return components[3]
    return None


def get_pointer_width(triple: str) -> str:
    if ("64" in triple and not triple.endswith("gnux32")) or triple.startswith("s390x"):
        return "64bit"
    return "32bit"


def is_android_target(triple: str) -> bool:
    return triple in ANDROID_TARGETS


def lacks_dylib_support(triple: str) -> bool:
    return "musl" in triple or "wasm32" in triple or "emscripten" in triple


def make_program(host: str) -> str:
    if any(marker in host for marker in BSD_HOST_MARKERS):
        return "gmake"
    return "make"


def dylib_env_var(platform: str | None = None) -> str:
    """Name of the variable the dynamic loader searches for shared libraries."""
    current = platform or sys.platform
    if current.startswith("win"):
        return "PATH"
    if current == "darwin":
        return "DYLD_LIBRARY_PATH"
    if current.startswith("haiku"):
        return "LIBRARY_PATH"
    return "LD_LIBRARY_PATH"


def exe_suffix(platform: str | None = None) -> str:
    current = platform or sys.platform
    return ".exe" if current.startswith("win") else ""


def split_maybe_args(value: str | None) -> list[str]:
    """Split a flag string on single spaces, dropping blank pieces."""
    if value is None:
        return []
    return [part for part in value.split(" ") if part.strip()]
