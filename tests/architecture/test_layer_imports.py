"""
Layer boundaries between the ledger packages.

1. ledger_kernel/** may NOT import ledger_config, ledger_engines or
   ledger_services.  The kernel never depends upward.

2. ledger_engines/** may NOT import ledger_services or sqlalchemy.
   Engines are pure calculations over domain records.

3. ledger_config/** may import only the kernel.

4. Engines never read the wall clock; ``today`` is always a parameter.

These tests read source code via AST and cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """(line_number, module) for every import in ``path``."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if any(module == p or module.startswith(f"{p}.") for p in forbidden):
                found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestLayerBoundaries:
    def test_packages_exist(self):
        for package in ("ledger_kernel", "ledger_config", "ledger_engines", "ledger_services"):
            assert _python_files(package), f"{package} has no modules"

    def test_kernel_has_no_upward_dependencies(self):
        violations = _violations(
            "ledger_kernel", ("ledger_config", "ledger_engines", "ledger_services")
        )

        assert not violations, "Kernel imports an upper layer:\n" + "\n".join(violations)

    def test_engines_do_not_touch_services_or_storage(self):
        violations = _violations("ledger_engines", ("ledger_services", "sqlalchemy"))

        assert not violations, "Engine imports I/O layer:\n" + "\n".join(violations)

    def test_config_depends_on_kernel_only(self):
        violations = _violations("ledger_config", ("ledger_engines", "ledger_services"))

        assert not violations, "Config imports an upper layer:\n" + "\n".join(violations)


def test_engines_never_read_wall_clock():
    """Engines take ``today`` from the caller."""
    offenders = []
    for path in _python_files("ledger_engines"):
        tree = ast.parse(path.read_text(), filename=str(path))
        for node in ast.walk(tree):
            if (
                isinstance(node, ast.Attribute)
                and node.attr in {"today", "now", "utcnow"}
                and isinstance(node.value, ast.Name)
                and node.value.id in {"date", "datetime"}
            ):
                offenders.append(f"  {path.relative_to(ROOT)}:{node.lineno}")

    assert not offenders, "Wall clock read in engine:\n" + "\n".join(offenders)
