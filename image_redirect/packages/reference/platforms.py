"""Parsing and validation of platform specifiers such as ``linux/arm64/v8``."""

import platform as host_platform
import re
import sys
from dataclasses import dataclass
from typing import Iterable, Optional

from image_redirect.errors import InvalidParameterError

_SPECIFIER_RE = re.compile(r"^[A-Za-z0-9_-]+$")

KNOWN_OS = frozenset(
    {
        "aix",
        "android",
        "darwin",
        "dragonfly",
        "freebsd",
        "hurd",
        "illumos",
        "ios",
        "js",
        "linux",
        "nacl",
        "netbsd",
        "openbsd",
        "plan9",
        "solaris",
        "windows",
        "zos",
    }
)

KNOWN_ARCHITECTURES = frozenset(
    {
        "386",
        "amd64",
        "amd64p32",
        "arm",
        "armbe",
        "arm64",
        "arm64be",
        "loong64",
        "mips",
        "mipsle",
        "mips64",
        "mips64le",
        "mips64p32",
        "mips64p32le",
        "ppc",
        "ppc64",
        "ppc64le",
        "riscv",
        "riscv64",
        "s390",
        "s390x",
        "sparc",
        "sparc64",
        "wasm",
    }
)


@dataclass(frozen=True)
class Platform:
    os: str
    architecture: str
    variant: str = ""

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


def normalize_os(os_name: str) -> str:
    os_name = os_name.lower()
    if os_name == "macos":
        return "darwin"
    return os_name


def normalize_arch(arch: str, variant: str) -> tuple[str, str]:
    """Collapse architecture aliases onto their canonical names."""
    arch, variant = arch.lower(), variant.lower()

    if arch == "i386":
        return "386", ""
    if arch in ("x86_64", "x86-64", "amd64"):
        return "amd64", "" if variant == "v1" else variant
    if arch in ("aarch64", "arm64"):
        return "arm64", "" if variant in ("8", "v8") else variant
    if arch == "armhf":
        return "arm", "v7"
    if arch == "armel":
        return "arm", "v6"
    if arch == "arm":
        if variant in ("", "7"):
            return "arm", "v7"
        if variant in ("5", "6", "8"):
            return "arm", f"v{variant}"
    return arch, variant


def host_default() -> Platform:
    os_name = "windows" if sys.platform.startswith("win") else normalize_os(sys.platform)
    if os_name.startswith("linux"):
        os_name = "linux"
    arch, variant = normalize_arch(host_platform.machine() or "amd64", "")
    return Platform(os=os_name, architecture=arch, variant=variant)


def parse_platform(specifier: str) -> Platform:
    """Parse ``os``, ``arch``, ``os/arch`` or ``os/arch/variant``.

    Missing components are filled in from the host.

    Raises:
        InvalidParameterError: for malformed or unknown specifiers
    """
    if "*" in specifier:
        raise InvalidParameterError(
            f"{specifier!r}: wildcards not yet supported: invalid platform specifier"
        )

    parts = specifier.split("/")
    for part in parts:
        if not _SPECIFIER_RE.match(part):
            raise InvalidParameterError(
                f"{specifier!r}: invalid platform specifier"
            )

    host = host_default()

    if len(parts) == 1:
        os_name = normalize_os(parts[0])
        if os_name in KNOWN_OS:
            return Platform(os=os_name, architecture=host.architecture, variant=host.variant)

        arch, variant = normalize_arch(parts[0], "")
        if arch == "arm" and variant == "v7":
            variant = ""
        if arch in KNOWN_ARCHITECTURES:
            return Platform(os=host.os, architecture=arch, variant=variant)

        raise InvalidParameterError(
            f"{specifier!r}: unknown operating system or architecture"
        )

    if len(parts) == 2:
        arch, variant = normalize_arch(parts[1], "")
        # v7 is the default arm variant and is only kept when spelled out
        if arch == "arm" and variant == "v7":
            variant = ""
        return Platform(os=normalize_os(parts[0]), architecture=arch, variant=variant)

    if len(parts) == 3:
        arch, variant = normalize_arch(parts[1], parts[2])
        if arch == "arm64" and not variant:
            variant = "v8"
        return Platform(os=normalize_os(parts[0]), architecture=arch, variant=variant)

    raise InvalidParameterError(f"{specifier!r}: cannot parse platform specifier")


def validate_platform(platform: Platform, supported_os: Iterable[str]) -> None:
    """Reject platforms whose OS this host cannot run."""
    if platform.os not in set(supported_os):
        raise InvalidParameterError(f"unsupported os {platform.os}")


def parse_requested_platform(
    specifier: str, supported_os: Iterable[str]
) -> Optional[Platform]:
    """Parse and validate an optional ``platform`` request parameter."""
    if not specifier:
        return None
    platform = parse_platform(specifier)
    validate_platform(platform, supported_os)
    return platform
