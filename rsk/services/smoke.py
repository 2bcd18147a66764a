"""Static-linking smoke checks for packaged binaries.

A binary is static when its ELF program headers carry no ``PT_INTERP``
entry (no dynamic loader requested). Non-ELF files (scripts, configs) are
not judged.
"""

from __future__ import annotations

import struct
from pathlib import Path

__all__ = ["is_static_elf", "dynamic_binaries"]

_ELF_MAGIC = b"\x7fELF"
_PT_INTERP = 3


def is_static_elf(path: Path) -> bool | None:
    """True/False for ELF files, None for anything else or unreadable files."""
    try:
        with path.open("rb") as f:
            ident = f.read(16)
            if len(ident) < 16 or ident[:4] != _ELF_MAGIC:
                return None
            is64 = ident[4] == 2
            endian = "<" if ident[5] == 1 else ">"

            if is64:
                header = f.read(48)
                if len(header) < 48:
                    return None
                e_phoff = struct.unpack_from(f"{endian}Q", header, 16)[0]
                e_phentsize, e_phnum = struct.unpack_from(f"{endian}HH", header, 38)
            else:
                header = f.read(36)
                if len(header) < 36:
                    return None
                e_phoff = struct.unpack_from(f"{endian}I", header, 12)[0]
                e_phentsize, e_phnum = struct.unpack_from(f"{endian}HH", header, 26)

            for i in range(e_phnum):
                f.seek(e_phoff + i * e_phentsize)
                p_type_raw = f.read(4)
                if len(p_type_raw) < 4:
                    return None
                if struct.unpack(f"{endian}I", p_type_raw)[0] == _PT_INTERP:
                    return False
            return True
    except OSError:
        return None


def dynamic_binaries(bin_dir: Path) -> tuple[str, ...]:
    """Names of ELF files in ``bin_dir`` that request a dynamic loader."""
    if not bin_dir.is_dir():
        return ()
    return tuple(
        p.name for p in sorted(bin_dir.iterdir()) if p.is_file() and is_static_elf(p) is False
    )
