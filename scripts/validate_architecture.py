#!/usr/bin/env python3
"""
Validate three-layer architecture dependencies.

Rules:
- c1 imports nothing from c2 or c3 (stdlib, external, core)
- c2 imports from c1, core and interfaces
- c3 imports from c2, c1, core and interfaces

Run from the repository root.
"""

import ast
import sys
from pathlib import Path
from typing import List, Optional, Tuple

PACKAGE = "storywright"


def extract_imports(file_path: Path) -> List[str]:
    """Extract all storywright imports from a Python file, without the package prefix."""
    try:
        with open(file_path, 'r') as f:
            tree = ast.parse(f.read(), filename=str(file_path))
    except SyntaxError as e:
        print(f"⚠️  Syntax error in {file_path}: {e}")
        return []

    prefix = PACKAGE + "."
    imports = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name.startswith(prefix):
                    imports.append(alias.name[len(prefix):])
        elif isinstance(node, ast.ImportFrom):
            if node.module and node.level == 0 and node.module.startswith(prefix):
                imports.append(node.module[len(prefix):])

    return imports


def get_layer(package_name: str) -> Optional[str]:
    """Get layer from package name (c1_, c2_, c3_); None for shared packages."""
    for layer in ('c1', 'c2', 'c3'):
        if package_name.startswith(layer + '_'):
            return layer
    return None


def validate_layer_dependencies(root: Path = Path(PACKAGE)) -> Tuple[bool, List[str]]:
    """Validate that layer dependencies follow the rules."""
    violations = []

    if not root.exists():
        print(f"❌ No {root}/ directory found")
        return False, [f"missing package directory {root}"]

    for py_file in sorted(root.rglob("*.py")):
        package_parts = py_file.relative_to(root).parts
        if len(package_parts) < 2:
            continue

        file_layer = get_layer(package_parts[0])
        if file_layer is None:
            continue

        for imported_module in extract_imports(py_file):
            imported_layer = get_layer(imported_module.split('.')[0])

            if file_layer == 'c1' and imported_layer in ['c2', 'c3']:
                violations.append(f"{py_file}: c1 cannot import from {imported_layer} ({imported_module})")
            elif file_layer == 'c2' and imported_layer == 'c3':
                violations.append(f"{py_file}: c2 cannot import from c3 ({imported_module})")

    return len(violations) == 0, violations


def main():
    """Run architecture validation."""
    print("=" * 70)
    print("Three-Layer Architecture Validator")
    print("=" * 70)
    print()

    success, violations = validate_layer_dependencies()

    if success:
        print("✅ All layer dependencies are valid!")
        print()
        print("Layer rules:")
        print("  - c1 imports: stdlib + external packages + core")
        print("  - c2 imports: c1 + core + interfaces")
        print("  - c3 imports: c1 + c2 + core + interfaces")
        return 0
    else:
        print(f"❌ Found {len(violations)} layer dependency violations:")
        print()
        for violation in violations:
            print(f"  - {violation}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
