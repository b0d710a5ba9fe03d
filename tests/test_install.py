"""
Tests for install planning and execution.
"""

import io
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from shadowtree.output import Output
from shadowtree.utils.install import (
    InstallJob,
    execute_installs,
    install_dependencies,
    plan_installs,
    run_install
)
from shadowtree.utils.managers import Manager


class InstallTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.base = Path(self.temp_dir).resolve()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, name, content=''):
        path = self.base / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    def plan(self):
        return [(job.directory, job.manager) for job in plan_installs(self.base)]


class TestPlanInstalls(InstallTestCase):
    """Test plan_installs."""

    def test_empty_tree(self):
        self.assertEqual(plan_installs(self.base), [])

    def test_api_and_web_monorepo(self):
        """Packages inside a pnpm workspace are installed by the root."""
        self.write('api/go.mod', 'module example.com/api\n')
        self.write('web/pnpm-lock.yaml')
        self.write('web/pnpm-workspace.yaml', "packages:\n  - 'app*'\n")
        self.write('web/app1/package.json', '{"name": "app1"}')
        self.write('web/app2/package.json', '{"name": "app2"}')

        self.assertEqual(self.plan(), [
            (self.base / 'api', Manager.GO),
            (self.base / 'web', Manager.PNPM),
        ])

    def test_other_ecosystem_inside_root_is_installed(self):
        """A Python service inside a JavaScript workspace still gets its own job."""
        self.write('web/pnpm-lock.yaml')
        self.write('web/pnpm-workspace.yaml')
        self.write('web/app1/package.json')
        self.write('web/tools/requirements.txt', 'requests\n')

        self.assertEqual(self.plan(), [
            (self.base / 'web', Manager.PNPM),
            (self.base / 'web' / 'tools', Manager.PIP),
        ])

    def test_base_directory_is_root(self):
        """A workspace root at the base covers everything below it."""
        self.write('yarn.lock')
        self.write('package.json', '{"private": true, "workspaces": ["packages/*"]}')
        self.write('packages/a/package.json')
        self.write('packages/b/package.json')

        self.assertEqual(self.plan(), [(self.base, Manager.YARN)])

    def test_nested_root_detected_lazily(self):
        """A monorepo below an unrelated directory is still recognised."""
        self.write('services/shop/Cargo.toml', '[workspace]\nmembers = ["crates/*"]\n')
        self.write('services/shop/crates/core/Cargo.toml', '[package]\nname = "core"\n')
        self.write('services/shop/crates/api/Cargo.toml', '[package]\nname = "api"\n')

        self.assertEqual(self.plan(), [(self.base / 'services' / 'shop', Manager.CARGO)])

    def test_independent_projects(self):
        """Without a root every project is its own job, in sorted order."""
        self.write('b/package-lock.json')
        self.write('a/package.json')
        self.write('c/Pipfile')

        self.assertEqual(self.plan(), [
            (self.base / 'a', Manager.NPM_MANIFEST),
            (self.base / 'b', Manager.NPM),
            (self.base / 'c', Manager.PIPENV),
        ])

    def test_pruned_directories_are_skipped(self):
        """Dependency caches and build output are never classified."""
        self.write('package-lock.json')
        self.write('node_modules/left-pad/package.json')
        self.write('dist/package.json')
        self.write('.venv/lib/pyproject.toml')
        self.write('.bare/package.json')

        self.assertEqual(self.plan(), [(self.base, Manager.NPM)])

    def test_covered_manifest_fallback_excluded(self):
        """A manifest-only package under an npm workspace root is not installed."""
        self.write('package-lock.json')
        self.write('package.json', '{"workspaces": ["pkg"]}')
        self.write('pkg/package.json', '{"name": "pkg"}')

        self.assertEqual(self.plan(), [(self.base, Manager.NPM)])


class TestRunInstall(InstallTestCase):
    """Test run_install and execute_installs."""

    def test_run_install_success(self):
        job = InstallJob(self.base, Manager.GO)
        completed = subprocess.CompletedProcess(['go'], 0, stdout='', stderr='')
        with patch('shadowtree.utils.install.subprocess.run', return_value=completed) as mock_run:
            result = run_install(job)

        self.assertTrue(result.success)
        mock_run.assert_called_once_with(
            ['go', 'mod', 'download'],
            cwd=self.base,
            capture_output=True,
            text=True
        )

    def test_run_install_failure_reports_last_line(self):
        job = InstallJob(self.base, Manager.NPM)
        completed = subprocess.CompletedProcess(['npm'], 1, stdout='', stderr='npm WARN x\nnpm ERR! boom\n')
        with patch('shadowtree.utils.install.subprocess.run', return_value=completed):
            result = run_install(job)

        self.assertFalse(result.success)
        self.assertEqual(result.error, 'npm ERR! boom')

    def test_run_install_missing_tool(self):
        job = InstallJob(self.base, Manager.PNPM)
        with patch('shadowtree.utils.install.subprocess.run', side_effect=FileNotFoundError('pnpm')):
            result = run_install(job)

        self.assertEqual(result.returncode, 127)
        self.assertIn('pnpm is not installed', result.error)

    def test_execute_no_jobs(self):
        with patch('shadowtree.utils.install.subprocess.run') as mock_run:
            self.assertEqual(execute_installs([], Output(stream=io.StringIO())), 0)
        mock_run.assert_not_called()

    def test_execute_counts_failures(self):
        """Every job runs even when some fail; failures are only counted."""
        jobs = [
            InstallJob(self.base / 'a', Manager.NPM),
            InstallJob(self.base / 'b', Manager.GO),
            InstallJob(self.base / 'c', Manager.CARGO),
        ]

        def fake_run(command, cwd, **kwargs):
            code = 1 if command[0] == 'go' else 0
            return subprocess.CompletedProcess(command, code, stdout='', stderr='go: network down')

        stream = io.StringIO()
        with patch('shadowtree.utils.install.subprocess.run', side_effect=fake_run) as mock_run:
            failures = execute_installs(jobs, Output(stream=stream), self.base)

        self.assertEqual(failures, 1)
        self.assertEqual(mock_run.call_count, 3)
        self.assertIn('go install failed in b', stream.getvalue())
        self.assertIn('1 of 3 installs failed', stream.getvalue())

    def test_single_failure_is_soft(self):
        stream = io.StringIO()
        completed = subprocess.CompletedProcess(['cargo'], 101, stdout='', stderr='error: no network')
        with patch('shadowtree.utils.install.subprocess.run', return_value=completed):
            failures = execute_installs([InstallJob(self.base, Manager.CARGO)], Output(stream=stream), self.base)

        self.assertEqual(failures, 1)
        self.assertIn('cargo install failed in .: error: no network', stream.getvalue())

    def test_dry_run_does_not_execute(self):
        self.write('api/go.mod')
        stream = io.StringIO()
        with patch('shadowtree.utils.install.subprocess.run') as mock_run:
            failures = install_dependencies(self.base, Output(stream=stream), dry_run=True)

        self.assertEqual(failures, 0)
        mock_run.assert_not_called()
        self.assertIn('go: api (go mod download)', stream.getvalue())


if __name__ == '__main__':
    unittest.main()
