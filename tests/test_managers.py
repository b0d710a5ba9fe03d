"""
Tests for the package manager registry and directory classification.
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from shadowtree.utils.managers import (
    REGISTRY,
    Ecosystem,
    Manager,
    ManagerRule,
    RegistryError,
    WorkspaceRoot,
    classify,
    detect_workspace_roots,
    get_rule,
    is_covered,
    validate_registry
)


class TestRegistry(unittest.TestCase):
    """Test the rule table itself."""

    def test_registry_is_valid(self):
        """The shipped table passes its own ordering check."""
        validate_registry(REGISTRY)

    def test_every_manager_has_a_rule(self):
        """Every Manager member maps to exactly one rule."""
        managers = [rule.manager for rule in REGISTRY]
        self.assertEqual(sorted(m.value for m in managers), sorted(m.value for m in Manager))

    def test_fallback_before_specific_rule_rejected(self):
        """A manifest fallback may not precede a lockfile rule of its ecosystem."""
        npm = get_rule(Manager.NPM)
        manifest = get_rule(Manager.NPM_MANIFEST)
        rules = [r for r in REGISTRY if r.manager not in (Manager.NPM, Manager.NPM_MANIFEST)]
        with self.assertRaises(RegistryError):
            validate_registry(rules + [manifest, npm])

    def test_fallback_order_is_per_ecosystem(self):
        """Moving a whole ecosystem keeps the table valid; moving only its fallback does not."""
        reordered = [r for r in REGISTRY if r.manager != Manager.PIP_EDITABLE]
        reordered.insert(0, get_rule(Manager.PIP_EDITABLE))
        with self.assertRaises(RegistryError):
            validate_registry(reordered)
        validate_registry(
            [r for r in REGISTRY if r.ecosystem == Ecosystem.PYTHON]
            + [r for r in REGISTRY if r.ecosystem != Ecosystem.PYTHON]
        )

    def test_duplicate_rule_rejected(self):
        """The same manager may not appear twice."""
        with self.assertRaises(RegistryError):
            validate_registry(REGISTRY + (get_rule(Manager.GO),))

    def test_missing_manager_rejected(self):
        """Dropping a rule breaks exhaustiveness."""
        with self.assertRaises(RegistryError):
            validate_registry([r for r in REGISTRY if r.manager != Manager.CARGO])

    def test_rule_without_patterns_rejected(self):
        """A rule must detect something."""
        broken = ManagerRule(Manager.GO, (), ('go', 'mod', 'download'), Ecosystem.GO)
        rules = [broken if r.manager == Manager.GO else r for r in REGISTRY]
        with self.assertRaises(RegistryError):
            validate_registry(rules)


class TestClassify(unittest.TestCase):
    """Test classify."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.temp_path = Path(self.temp_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def touch(self, *names, content=''):
        for name in names:
            path = self.temp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    def test_empty_directory(self):
        """Nothing to install in an empty directory."""
        self.assertIsNone(classify(self.temp_path))

    def test_lockfile_priority(self):
        """pnpm wins over npm when both lockfiles are present."""
        self.touch('pnpm-lock.yaml', 'package-lock.json', 'package.json')
        self.assertEqual(classify(self.temp_path), Manager.PNPM)

    def test_bun_text_lockfile(self):
        """Both bun lockfile formats are detected."""
        self.touch('bun.lock', 'package.json')
        self.assertEqual(classify(self.temp_path), Manager.BUN)

    def test_manifest_fallback(self):
        """A bare package.json falls back to npm."""
        self.touch('package.json')
        self.assertEqual(classify(self.temp_path), Manager.NPM_MANIFEST)
        self.assertEqual(get_rule(Manager.NPM_MANIFEST).command, ('npm', 'install'))

    def test_requirements_beats_pyproject(self):
        """requirements.txt is preferred over the editable-install fallback."""
        self.touch('pyproject.toml', 'requirements.txt')
        self.assertEqual(classify(self.temp_path), Manager.PIP)

    def test_pyproject_fallback(self):
        self.touch('pyproject.toml')
        self.assertEqual(classify(self.temp_path), Manager.PIP_EDITABLE)

    def test_earlier_ecosystem_wins(self):
        """A directory matching two ecosystems takes the earlier rule."""
        self.touch('Cargo.toml', 'go.mod')
        self.assertEqual(classify(self.temp_path), Manager.CARGO)


class TestWorkspaceRoots(unittest.TestCase):
    """Test detect_workspace_roots and is_covered."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.temp_path = Path(self.temp_dir).resolve()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, name, content=''):
        path = self.temp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    def test_pnpm_workspace(self):
        """pnpm-workspace.yaml marks a JavaScript root."""
        self.write('pnpm-lock.yaml')
        self.write('pnpm-workspace.yaml', "packages:\n  - 'apps/*'\n")
        roots = detect_workspace_roots(self.temp_path)
        self.assertEqual(roots, {WorkspaceRoot(Ecosystem.JAVASCRIPT, self.temp_path)})

    def test_yarn_workspaces_field(self):
        """A "workspaces" key in package.json marks a yarn root."""
        self.write('yarn.lock')
        self.write('package.json', '{"name": "mono", "workspaces": ["packages/*"]}')
        roots = detect_workspace_roots(self.temp_path)
        self.assertEqual(roots, {WorkspaceRoot(Ecosystem.JAVASCRIPT, self.temp_path)})

    def test_npm_without_workspaces(self):
        """A plain npm project is not a root."""
        self.write('package-lock.json')
        self.write('package.json', '{"name": "app"}')
        self.assertEqual(detect_workspace_roots(self.temp_path), set())

    def test_manifest_only_is_not_probed(self):
        """Only lockfile rules declare workspace specs."""
        self.write('package.json', '{"workspaces": ["a"]}')
        self.assertEqual(detect_workspace_roots(self.temp_path), set())

    def test_cargo_workspace(self):
        self.write('Cargo.toml', '[workspace]\nmembers = ["crates/*"]\n')
        roots = detect_workspace_roots(self.temp_path)
        self.assertEqual(roots, {WorkspaceRoot(Ecosystem.RUST, self.temp_path)})

    def test_cargo_package_is_not_root(self):
        """`[workspace]` must start a line."""
        self.write('Cargo.toml', '[package]\nname = "x"\n# see [workspace] docs\n')
        self.assertEqual(detect_workspace_roots(self.temp_path), set())

    def test_go_work(self):
        self.write('go.mod', 'module example.com/x\n')
        self.write('go.work', 'go 1.22\n')
        roots = detect_workspace_roots(self.temp_path)
        self.assertEqual(roots, {WorkspaceRoot(Ecosystem.GO, self.temp_path)})

    def test_multiple_ecosystems(self):
        """One directory can be a root for several ecosystems."""
        self.write('pnpm-lock.yaml')
        self.write('pnpm-workspace.yaml')
        self.write('Cargo.toml', '[workspace]\n')
        roots = detect_workspace_roots(self.temp_path)
        self.assertEqual({root.ecosystem for root in roots}, {Ecosystem.JAVASCRIPT, Ecosystem.RUST})

    def test_first_javascript_rule_decides(self):
        """With pnpm and npm lockfiles only the pnpm spec is evaluated."""
        self.write('pnpm-lock.yaml')
        self.write('package-lock.json')
        self.write('package.json', '{"workspaces": ["a"]}')
        self.assertEqual(detect_workspace_roots(self.temp_path), set())

    def test_is_covered(self):
        """Only proper ancestors of the same ecosystem cover a directory."""
        root = WorkspaceRoot(Ecosystem.JAVASCRIPT, self.temp_path / 'web')
        child = self.temp_path / 'web' / 'app1'
        self.assertTrue(is_covered(child, Ecosystem.JAVASCRIPT, [root]))
        self.assertFalse(is_covered(child, Ecosystem.GO, [root]))
        self.assertFalse(is_covered(self.temp_path / 'web', Ecosystem.JAVASCRIPT, [root]))
        self.assertFalse(is_covered(self.temp_path / 'api', Ecosystem.JAVASCRIPT, [root]))


if __name__ == '__main__':
    unittest.main()
