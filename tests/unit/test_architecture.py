"""
Architecture validation tests for NiORM.

These tests ensure that the layer dependency rules are maintained throughout
the package: the domain depends on nothing, the application layer only on the
domain, and infrastructure on both.
"""

import ast
import os
import sys
from collections import defaultdict
from pathlib import Path

import pytest

PACKAGE = "niorm"
LAYERS = ("domain", "application", "infrastructure")


class ArchitectureValidator:
    """Validates architecture rules and dependencies in the codebase."""

    def __init__(self, package_path: Path):
        self.package_path = package_path
        self.domain_path = self.package_path / "domain"

        # Define layer dependencies rules
        self.allowed_dependencies = {
            "domain": set(),  # Domain should have no dependencies on other layers
            "application": {"domain"},  # Application can depend on domain
            "infrastructure": {"domain", "application"},  # Infrastructure can depend on both
        }

        self._module_cache: dict[Path, ast.Module] = {}
        self._import_cache: dict[Path, set[str]] = {}

    def python_files(self) -> list[Path]:
        return [path for path in self.package_path.rglob("*.py") if "__pycache__" not in str(path)]

    def parse_file(self, filepath: Path) -> ast.Module | None:
        """Parse a Python file and return its AST."""
        if filepath in self._module_cache:
            return self._module_cache[filepath]

        try:
            with open(filepath, encoding="utf-8") as f:
                tree = ast.parse(f.read(), filename=str(filepath))
                self._module_cache[filepath] = tree
                return tree
        except (SyntaxError, FileNotFoundError):
            return None

    def get_imports(self, filepath: Path) -> set[str]:
        """Extract all absolute imports from a Python file."""
        if filepath in self._import_cache:
            return self._import_cache[filepath]

        imports = set()
        tree = self.parse_file(filepath)
        if not tree:
            return imports

        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    imports.add(alias.name)
            elif isinstance(node, ast.ImportFrom):
                if node.module and node.level == 0:
                    imports.add(node.module)

        self._import_cache[filepath] = imports
        return imports

    def get_layer(self, filepath: Path) -> str | None:
        """Determine which layer a file belongs to."""
        parts = filepath.relative_to(self.package_path).parts
        if parts and parts[0] in LAYERS:
            return parts[0]
        return None

    def check_dependency_violations(self) -> list[tuple[Path, str, str]]:
        """Check for dependency rule violations."""
        violations = []

        for filepath in self.python_files():
            layer = self.get_layer(filepath)
            if not layer:
                continue

            for import_str in self.get_imports(filepath):
                import_parts = import_str.split(".")
                if import_parts[0] != PACKAGE or len(import_parts) < 2:
                    continue
                imported_layer = import_parts[1]
                if (
                    imported_layer in LAYERS
                    and imported_layer not in self.allowed_dependencies[layer]
                    and imported_layer != layer
                ):
                    violations.append((filepath, layer, imported_layer))

        return violations

    def find_circular_dependencies(self) -> list[list[str]]:
        """Detect circular dependencies between modules."""
        graph = defaultdict(set)
        modules = {self._filepath_to_module(path) for path in self.python_files()}

        for filepath in self.python_files():
            module_name = self._filepath_to_module(filepath)
            for import_str in self.get_imports(filepath):
                if import_str in modules and import_str != module_name:
                    graph[module_name].add(import_str)

        cycles = []
        visited = set()
        rec_stack = []

        def dfs(node: str) -> bool:
            if node in rec_stack:
                cycle_start = rec_stack.index(node)
                cycles.append(rec_stack[cycle_start:] + [node])
                return True

            if node in visited:
                return False

            visited.add(node)
            rec_stack.append(node)

            for neighbor in graph.get(node, []):
                if dfs(neighbor):
                    return True

            rec_stack.pop()
            return False

        for node in list(graph):
            if node not in visited:
                dfs(node)

        return cycles

    def third_party_imports(self, filepath: Path) -> set[str]:
        """Top-level names of imports that are neither stdlib nor the package itself."""
        roots = {name.split(".")[0] for name in self.get_imports(filepath)}
        return {
            root for root in roots if root != PACKAGE and root not in sys.stdlib_module_names
        }

    def _filepath_to_module(self, filepath: Path) -> str:
        relative = filepath.relative_to(self.package_path.parent)
        module = str(relative.with_suffix("")).replace(os.sep, ".")
        return module.removesuffix(".__init__")


# Test fixtures
@pytest.fixture
def validator():
    """Create an architecture validator instance."""
    package_path = Path(__file__).parent.parent.parent / PACKAGE
    return ArchitectureValidator(package_path)


class TestDependencyRules:
    """Test dependency rules between layers."""

    def test_domain_has_no_layer_dependencies(self, validator):
        """Domain layer should not depend on application or infrastructure."""
        violations = [v for v in validator.check_dependency_violations() if v[1] == "domain"]

        assert not violations, f"Domain layer has forbidden dependencies: {violations}"

    def test_application_has_no_infrastructure_dependencies(self, validator):
        """Application layer should not depend on infrastructure."""
        violations = [
            v for v in validator.check_dependency_violations() if v[1] == "application"
        ]

        assert not violations, f"Application layer has forbidden dependencies: {violations}"

    def test_no_circular_dependencies(self, validator):
        """Modules should not import each other in a cycle."""
        cycles = validator.find_circular_dependencies()

        assert not cycles, f"Circular dependencies found: {cycles}"


class TestDomainIntegrity:
    """Test domain layer integrity."""

    def test_domain_uses_only_the_standard_library(self, validator):
        """Domain modules should not import third-party packages."""
        offenders = {
            str(path.relative_to(validator.package_path)): validator.third_party_imports(path)
            for path in validator.domain_path.rglob("*.py")
            if validator.third_party_imports(path)
        }

        assert not offenders, f"Domain modules import third-party packages: {offenders}"

    def test_driver_is_confined_to_database_infrastructure(self, validator):
        """Only the database infrastructure should touch the driver."""
        database_path = validator.package_path / "infrastructure" / "database"
        offenders = [
            str(path.relative_to(validator.package_path))
            for path in validator.python_files()
            if {"psycopg", "psycopg_pool"} & validator.third_party_imports(path)
            and database_path not in path.parents
        ]

        assert not offenders, f"Driver imported outside the database layer: {offenders}"
