"""
Tests for env-file and pattern-based file copying.
"""

import io
import os
import shutil
import stat
import tempfile
import unittest
from pathlib import Path

from shadowtree.output import Output
from shadowtree.utils.files import (
    copy_env_files,
    copy_included_files,
    find_included_files,
    is_regex_pattern,
    sync_matching_files
)


class FilesTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.source = Path(self.temp_dir) / 'main'
        self.dest = Path(self.temp_dir) / 'feature'
        self.source.mkdir()
        self.dest.mkdir()
        self.stream = io.StringIO()
        self.output = Output(stream=self.stream)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write(self, relative, content='x'):
        path = self.source / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path


class TestPatternKind(unittest.TestCase):
    """Test is_regex_pattern."""

    def test_plain_names(self):
        self.assertFalse(is_regex_pattern('secrets'))
        self.assertFalse(is_regex_pattern('local-settings_json'))

    def test_metacharacters(self):
        for pattern in ('^\\.env', 'config.json', '*.pem', 'a|b', 'c++'):
            self.assertTrue(is_regex_pattern(pattern), pattern)


class TestCopyEnvFiles(FilesTestCase):
    """Test copy_env_files."""

    def test_copies_top_level_env_files(self):
        self.write('.env', 'A=1')
        self.write('.env.local', 'B=2')
        self.write('.envrc', 'use nix')
        self.write('README.md')
        self.write('app/.env', 'nested')

        copied = copy_env_files(self.source, self.dest, self.output)

        self.assertEqual(copied, 3)
        self.assertEqual((self.dest / '.env').read_text(), 'A=1')
        self.assertTrue((self.dest / '.env.local').exists())
        self.assertTrue((self.dest / '.envrc').exists())
        self.assertFalse((self.dest / 'README.md').exists())
        self.assertFalse((self.dest / 'app').exists())
        self.assertIn('Copied 3 .env file(s)', self.stream.getvalue())

    def test_preserves_permissions(self):
        env = self.write('.env', 'SECRET=1')
        os.chmod(env, 0o600)

        copy_env_files(self.source, self.dest, self.output)

        self.assertEqual(stat.S_IMODE((self.dest / '.env').stat().st_mode), 0o600)

    def test_overwrites_existing(self):
        self.write('.env', 'NEW=1')
        (self.dest / '.env').write_text('OLD=1')

        copy_env_files(self.source, self.dest, self.output)

        self.assertEqual((self.dest / '.env').read_text(), 'NEW=1')

    def test_directory_named_like_env_is_ignored(self):
        (self.source / '.env.d').mkdir()
        self.assertEqual(copy_env_files(self.source, self.dest, self.output), 0)

    def test_missing_source(self):
        self.assertEqual(copy_env_files(self.source / 'nope', self.dest, self.output), 0)


class TestCopyIncludedFiles(FilesTestCase):
    """Test copy_included_files and find_included_files."""

    def test_glob_pattern_keeps_structure(self):
        """Plain patterns are matched against basenames anywhere in the tree."""
        self.write('config/local_settings', 'a')
        self.write('services/api/local_settings', 'b')
        self.write('config/other', 'c')

        copied = copy_included_files(self.source, self.dest, ['local_settings'], self.output)

        self.assertEqual(copied, 2)
        self.assertEqual((self.dest / 'config' / 'local_settings').read_text(), 'a')
        self.assertEqual((self.dest / 'services' / 'api' / 'local_settings').read_text(), 'b')
        self.assertFalse((self.dest / 'config' / 'other').exists())
        self.assertIn('Copied 2 additional file(s) from config', self.stream.getvalue())

    def test_regex_pattern(self):
        """Patterns with metacharacters are searched as regexes in the basename."""
        self.write('certs/dev.pem')
        self.write('certs/dev.key')
        self.write('certs/readme')

        found = find_included_files(self.source, r'\.(pem|key)$', self.output)

        self.assertEqual(
            sorted(p.relative_to(self.source).as_posix() for p in found),
            ['certs/dev.key', 'certs/dev.pem']
        )

    def test_invalid_regex_is_reported_and_skipped(self):
        """A glob-looking pattern with regex metacharacters is treated as a regex."""
        self.write('server.pem')

        copied = copy_included_files(self.source, self.dest, ['*.pem'], self.output)

        self.assertEqual(copied, 0)
        self.assertIn("Invalid pattern '*.pem'", self.stream.getvalue())

    def test_no_patterns(self):
        self.write('anything')
        self.assertEqual(copy_included_files(self.source, self.dest, [], self.output), 0)


class TestSyncMatchingFiles(FilesTestCase):
    """Test sync_matching_files."""

    def test_syncs_matching_files(self):
        self.write('.env', 'A=1')
        self.write('packages/web/.env.local', 'B=2')
        self.write('.nvmrc', '20')
        self.write('src/index.js')

        synced = sync_matching_files(
            self.source, self.dest, [r'^\.env.*', r'^\.nvmrc$'], self.output
        )

        self.assertEqual(synced, 3)
        self.assertEqual((self.dest / 'packages' / 'web' / '.env.local').read_text(), 'B=2')
        self.assertFalse((self.dest / 'src').exists())

    def test_skips_hidden_and_node_modules(self):
        self.write('.git/.env')
        self.write('node_modules/pkg/.env')
        self.write('.env')

        synced = sync_matching_files(self.source, self.dest, [r'^\.env'], self.output)

        self.assertEqual(synced, 1)
        self.assertFalse((self.dest / '.git').exists())
        self.assertFalse((self.dest / 'node_modules').exists())

    def test_overwrites_each_time(self):
        self.write('.env', 'v1')
        sync_matching_files(self.source, self.dest, [r'^\.env'], self.output)
        self.write('.env', 'v2')
        sync_matching_files(self.source, self.dest, [r'^\.env'], self.output)

        self.assertEqual((self.dest / '.env').read_text(), 'v2')

    def test_target_through_symlink(self):
        """Syncing into a symlink of the source leaves the file in place."""
        self.write('.env', 'A=1')
        link = Path(self.temp_dir) / 'link'
        os.symlink(self.source, link, target_is_directory=True)

        synced = sync_matching_files(self.source, link, [r'^\.env'], self.output)

        self.assertEqual(synced, 1)
        self.assertEqual((self.source / '.env').read_text(), 'A=1')


if __name__ == '__main__':
    unittest.main()
