"""
Import-boundary enforcement.

1. Kernel isolation  -- stock_kernel/** may not import stock_modules or
                        stock_config.
2. Domain purity     -- stock_kernel/domain/** may not import the ORM, the
                        database driver, or kernel models/services/db.
3. Read side         -- stock_kernel/selectors/** may not import services.
4. Config leaf       -- stock_config/** may not import kernel or modules.
5. Models            -- stock_kernel/models/** may only reach the kernel
                        through db and domain.

All scanning is done via AST; nothing is imported.
"""

import ast
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, module) for every import in *path*."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            results.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == prefix or module.startswith(f"{prefix}.") for prefix in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if _matches_any(module, forbidden):
                found.append(f"{path.relative_to(ROOT)}:{lineno} imports {module}")
    return found


BOUNDARIES = {
    "stock_kernel": ("stock_modules", "stock_config", "scripts"),
    "stock_kernel/domain": (
        "sqlalchemy",
        "psycopg2",
        "stock_kernel.db",
        "stock_kernel.models",
        "stock_kernel.services",
        "stock_kernel.selectors",
    ),
    "stock_kernel/selectors": ("stock_kernel.services",),
    "stock_kernel/models": ("stock_kernel.services", "stock_kernel.selectors"),
    "stock_config": ("stock_kernel", "stock_modules"),
}


@pytest.mark.parametrize("package", sorted(BOUNDARIES))
def test_import_boundary(package):
    violations = _violations(package, BOUNDARIES[package])
    assert not violations, "\n".join(violations)


def test_packages_are_scanned():
    for package in BOUNDARIES:
        assert _python_files(package), f"no python files found under {package}"


def test_reporting_does_not_write_through_services():
    """Reports read through selectors only; they never append movements."""
    violations = _violations(
        "stock_modules/reporting",
        ("stock_kernel.services.ledger_writer", "stock_kernel.services.snapshot_projector"),
    )
    assert not violations, "\n".join(violations)
