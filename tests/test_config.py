import contextlib
import io
import json
import os
import sys
import tempfile
import time
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from commit2base import config
from commit2base.config import ConfigurationError
from commit2base.core import main, parse_date_arg, resolve_window
from commit2base.database import Database
from commit2base.database import operation as ops

CONFIG_WITH_PLATFORMS = """
output:
  type: sqlite
  sqlite:
    database: ":memory:"
platforms:
  - name: GitHub
    type: github
    url: https://github.com/acme
    token: ${C2B_TEST_TOKEN}
sync:
  commit_concurrency: 2
"""


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.env = mock.patch.dict(os.environ, {"COMMIT2BASE_HOME": self.tmp.name, "C2B_TEST_TOKEN": "s3cret"})
        self.env.start()
        self._reset_cache()

    def tearDown(self):
        self._reset_cache()
        self.env.stop()
        self.tmp.cleanup()

    @staticmethod
    def _reset_cache():
        config._config_cache = None
        config._config_last_modified = 0

    def _write(self, text):
        path, _ = config.get_default_config_paths()
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        # Bump mtime so the cache notices the rewrite
        stamp = time.time() + 10
        if os.path.getmtime(path) >= stamp:
            stamp = os.path.getmtime(path) + 10
        os.utime(path, (stamp, stamp))
        return path


class TestConfig(ConfigTestCase):

    def test_template_is_created(self):
        output = config.load_output_config()
        self.assertEqual(output["type"], "sqlite")
        self.assertTrue(os.path.exists(os.path.join(self.tmp.name, "config", "config.yaml")))
        self.assertEqual(config.load_platforms_config(), [])
        self.assertEqual(
            config.load_analysis_config()["rules"][0], "SmallVagueCommitRule"
        )

    def test_platforms_expand_environment(self):
        self._write(CONFIG_WITH_PLATFORMS)
        platforms = config.load_platforms_config()
        self.assertEqual(platforms[0]["token"], "s3cret")
        self.assertEqual(platforms[0]["type"], "github")

        sync = config.load_sync_config()
        self.assertEqual(sync["commit_concurrency"], 2)
        self.assertEqual(sync["repo_concurrency"], config.DEFAULT_SYNC_CONFIG["repo_concurrency"])

    def test_reload_after_change(self):
        self._write(CONFIG_WITH_PLATFORMS)
        self.assertEqual(len(config.load_platforms_config()), 1)
        self._write(CONFIG_WITH_PLATFORMS.replace("platforms:", "unused:"))
        self.assertEqual(config.load_platforms_config(), [])

    def test_invalid_config(self):
        cases = {
            "unknown platform": CONFIG_WITH_PLATFORMS.replace("type: github", "type: bitbucket"),
            "missing token": CONFIG_WITH_PLATFORMS.replace("    token: ${C2B_TEST_TOKEN}\n", ""),
            "unknown output": CONFIG_WITH_PLATFORMS.replace("type: sqlite", "type: oracle"),
            "bad yaml": "output: [unclosed",
            "not a mapping": "- just a list",
        }
        for name, text in cases.items():
            with self.subTest(case=name):
                self._reset_cache()
                self._write(text)
                with self.assertRaises(ConfigurationError):
                    config.load_output_config()


class TestDates(unittest.TestCase):

    def test_parse_date_arg(self):
        tokyo = timezone(timedelta(hours=9))
        self.assertEqual(parse_date_arg("2024-03-01", tokyo), datetime(2024, 2, 29, 15, 0))
        self.assertEqual(parse_date_arg("2024-03-01", tokyo, end_of_day=True), datetime(2024, 3, 1, 14, 59, 59))
        self.assertEqual(parse_date_arg("2024-03-01T10:00:00+00:00", tokyo), datetime(2024, 3, 1, 10, 0))
        self.assertIsNone(parse_date_arg(None, tokyo))
        with self.assertRaises(ValueError):
            parse_date_arg("03/01/2024", tokyo)

    def test_resolve_window(self):
        db = Database.in_memory()
        try:
            from_date, to_date = resolve_window(db, None, "2024-03-10")
            self.assertEqual(to_date, datetime(2024, 3, 10, 23, 59, 59))
            self.assertEqual(from_date, datetime(2024, 3, 3, 23, 59, 59))

            with db.session_scope() as session:
                ops.set_setting(session, "default_date_range_days", 2)
            from_date, _ = resolve_window(db, None, "2024-03-10")
            self.assertEqual(from_date, datetime(2024, 3, 8, 23, 59, 59))

            from_date, _ = resolve_window(db, "2024-03-01", "2024-03-10")
            self.assertEqual(from_date, datetime(2024, 3, 1))
        finally:
            db.close()


class TestCommandLine(ConfigTestCase):

    def _run(self, *args):
        stdout = io.StringIO()
        with mock.patch.object(sys, "argv", ["commit2base", *args]), contextlib.redirect_stdout(stdout):
            main()
        return stdout.getvalue()

    def test_developers_on_fresh_database(self):
        self._write(CONFIG_WITH_PLATFORMS)
        self.assertEqual(json.loads(self._run("--developers")), [])

    def test_estimate_on_empty_window(self):
        self._write(CONFIG_WITH_PLATFORMS)
        output = json.loads(self._run("--estimate", "--from", "2024-03-01", "--to", "2024-03-02"))
        self.assertEqual(output["commits"], 0)
        self.assertEqual(output["estimated_hours"], 0)

    def test_bad_date_exits(self):
        self._write(CONFIG_WITH_PLATFORMS)
        with self.assertRaises(SystemExit) as ctx:
            self._run("--estimate", "--from", "yesterday")
        self.assertEqual(ctx.exception.code, 1)

    def test_configuration_error_exits(self):
        self._write(CONFIG_WITH_PLATFORMS.replace("type: sqlite", "type: oracle"))
        with self.assertRaises(SystemExit) as ctx:
            self._run("--developers")
        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
