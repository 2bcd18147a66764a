from __future__ import annotations

from rsk.cli.context import build_context
from rsk.output.console import Style
from rsk.release.manifest import TOOLS, components_for
from rsk.services.components import COMPONENTS


def tools() -> None:
    """List the tools, their variants and what each variant ships."""
    ctx = build_context()
    for spec in TOOLS.values():
        ctx.console.header(f"{spec.name} ({spec.upstream})")
        for variant in spec.variants:
            parts = [
                f"{name} [{type(COMPONENTS[name]).__name__.removesuffix('Component').lower()}]"
                for name in components_for(spec, variant)
            ]
            ctx.console.print(f"{variant}: {', '.join(parts)}", Style.DEFAULT)
