import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core import paths as core_paths


class CorePathsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_env_home_is_preferred_and_prepared(self) -> None:
        target = self.root / "custom-home"
        with mock.patch.dict(os.environ, {"DOCSNAP_HOME": str(target)}):
            resolved = core_paths.resolve_working_dir()
        self.assertEqual(resolved, target.resolve())
        self.assertTrue(core_paths.get_backups_dir(resolved).is_dir())
        self.assertTrue(core_paths.get_logs_dir(resolved).is_dir())

    def test_falls_back_to_home_directory(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=False), mock.patch.object(
            core_paths.Path, "home", return_value=self.root
        ):
            os.environ.pop("DOCSNAP_HOME", None)
            resolved = core_paths.resolve_working_dir()
        self.assertEqual(resolved, self.root / ".docsnap")
        self.assertTrue((self.root / ".docsnap" / "backups").is_dir())

    def test_unwritable_candidate_is_skipped(self) -> None:
        with mock.patch.object(core_paths, "_ensure_writable_dir", return_value=False):
            self.assertIsNone(core_paths._prepare_working_dir(self.root / "nope"))

    def test_structure_and_settings_search_order(self) -> None:
        working_dir = self.root / "wd"
        core_paths.ensure_working_dir_structure(working_dir)
        self.assertTrue(core_paths.get_backups_dir(working_dir).is_dir())
        self.assertTrue(core_paths.get_logs_dir(working_dir).is_dir())
        candidates = core_paths.get_default_settings_paths(working_dir)
        self.assertEqual(candidates[0], working_dir / "settings.json")
        self.assertEqual(candidates[-1].name, "settings.json")


if __name__ == "__main__":
    unittest.main()
