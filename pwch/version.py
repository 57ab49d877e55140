from __future__ import annotations

import platform
from importlib import metadata

DISTRIBUTION = "pwch"
RUNTIME_DEPENDENCIES = (
    "fastapi",
    "uvicorn",
    "jinja2",
    "python-multipart",
    "passlib",
    "bcrypt",
    "PyYAML",
)


def package_version() -> str:
    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "unknown"


def version_report(program: str = "pwch") -> str:
    lines = [f"{program} version:", f"  {package_version()}"]
    lines.append("Built with:")
    lines.append(f"  Python {platform.python_version()}")
    lines.append("Dependencies:")
    found = False
    for name in RUNTIME_DEPENDENCIES:
        try:
            v = metadata.version(name)
        except metadata.PackageNotFoundError:
            continue
        lines.append(f"  {name} \t {v}")
        found = True
    if not found:
        lines.append("  no external dependencies")
    return "\n".join(lines)
