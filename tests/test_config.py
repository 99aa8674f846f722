import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from utils.config import DEFAULT_CONFIG, get_config_path, load_config, save_config


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.tmpdir.name) / "config.json"
        env = {k: v for k, v in os.environ.items() if not k.startswith("POS_")}
        self.env_patch = patch.dict(os.environ, env, clear=True)
        self.env_patch.start()

    def tearDown(self):
        self.env_patch.stop()
        self.tmpdir.cleanup()

    def test_defaults_when_file_missing(self):
        config = load_config(self.config_path)
        self.assertEqual(config, DEFAULT_CONFIG)
        self.assertIsNot(config["scanner"], DEFAULT_CONFIG["scanner"])

    def test_file_sections_merge_over_defaults(self):
        self.config_path.write_text(json.dumps({
            "scanner": {"min_length": 10},
            "sync": {"remote_url": "https://pos.example.com/api"},
            "store": {"name": "Main street"}
        }))

        config = load_config(self.config_path)

        self.assertEqual(config["scanner"]["min_length"], 10)
        self.assertEqual(config["scanner"]["max_length"], 20)
        self.assertEqual(config["sync"]["remote_url"], "https://pos.example.com/api")
        self.assertEqual(config["store"], {"name": "Main street"})

    def test_invalid_json_falls_back_to_defaults(self):
        self.config_path.write_text("{not json")
        self.assertEqual(load_config(self.config_path), DEFAULT_CONFIG)

    def test_non_object_json_falls_back_to_defaults(self):
        for content in ('["scanner"]', '"pos"', '42'):
            self.config_path.write_text(content)
            self.assertEqual(load_config(self.config_path), DEFAULT_CONFIG)

    def test_environment_overrides(self):
        self.config_path.write_text(json.dumps({"sync": {"remote_url": "http://file"}}))
        with patch.dict(os.environ, {
            "POS_REMOTE_URL": "http://env",
            "POS_SYNC_INTERVAL": "2.5",
            "POS_API_PORT": "9000",
            "POS_DB_PATH": "/tmp/pos.db",
        }):
            config = load_config(self.config_path)

        self.assertEqual(config["sync"]["remote_url"], "http://env")
        self.assertEqual(config["sync"]["sync_interval"], 2.5)
        self.assertEqual(config["api"]["port"], 9000)
        self.assertEqual(config["database"]["path"], "/tmp/pos.db")

    def test_bad_environment_value_is_ignored(self):
        with patch.dict(os.environ, {"POS_API_PORT": "eighty"}):
            config = load_config(self.config_path)
        self.assertEqual(config["api"]["port"], 8000)

    def test_config_path_from_environment(self):
        with patch.dict(os.environ, {"POS_CONFIG_PATH": str(self.config_path)}):
            self.assertEqual(get_config_path(), self.config_path)
        self.assertEqual(get_config_path().name, "config.json")

    def test_save_config_keeps_backup(self):
        self.assertTrue(save_config({"api": {"port": 1}}, self.config_path))
        self.assertTrue(save_config({"api": {"port": 2}}, self.config_path))

        self.assertEqual(json.loads(self.config_path.read_text())["api"]["port"], 2)
        backup = self.config_path.with_suffix(".json.bak")
        self.assertEqual(json.loads(backup.read_text())["api"]["port"], 1)


if __name__ == '__main__':
    unittest.main()
