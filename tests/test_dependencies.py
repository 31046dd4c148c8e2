from __future__ import annotations

import ast
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]

# Distribution names that differ from their import names.
IMPORT_TO_DIST = {"sklearn": "scikit-learn"}


def _requirement_names(path: Path) -> set[str]:
    names: set[str] = set()
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        for sep in ("==", ">=", "<=", "~=", "!=", ">", "<", "["):
            line = line.split(sep, 1)[0]
        names.add(line.strip().lower())
    return names


def _third_party_imports(pkg_root: Path) -> set[str]:
    stdlib = set(getattr(sys, "stdlib_module_names", ()))
    found: set[str] = set()
    for path in pkg_root.rglob("*.py"):
        tree = ast.parse(path.read_text(encoding="utf-8"))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                found.update(alias.name.split(".")[0] for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and node.module and not node.level:
                found.add(node.module.split(".")[0])
    found.discard("__future__")
    return {IMPORT_TO_DIST.get(m, m).lower() for m in found if m not in stdlib and m != "sc_miqc"}


def test_every_import_is_declared():
    imports = _third_party_imports(REPO_ROOT / "sc_miqc")
    reqs = _requirement_names(REPO_ROOT / "requirements.txt")
    missing = sorted(imports - reqs)
    assert missing == [], f"Missing dependencies in requirements.txt: {missing}"


def test_every_requirement_is_used():
    imports = _third_party_imports(REPO_ROOT / "sc_miqc")
    reqs = _requirement_names(REPO_ROOT / "requirements.txt")
    unused = sorted(reqs - imports)
    assert unused == [], f"requirements.txt lists packages the library never imports: {unused}"
