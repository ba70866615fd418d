"""
Rule configuration precedence and capability grants.
"""

import ipaddress
import json
import os
import tempfile
import unittest
from unittest.mock import patch

from attemptlock import config
from attemptlock.unlock import CAP_ALLOW_CHANGE, CAP_EDIT_ENABLED


class TestRuleConfig(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "attemptlock.json")
        config.invalidate_config_cache()

    def tearDown(self):
        config.invalidate_config_cache()
        self._tmp.cleanup()

    def _write(self, data):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def test_site_wide_fallback(self):
        with patch.object(config, "EXEMPT_SUBNETS", "10.0.0.0/8"), \
                patch.object(config, "DEFAULT_ENABLED", True), \
                patch.dict(os.environ):
            os.environ.pop("ATTEMPTLOCK_ONECONNECTION_WHITELIST", None)
            os.environ.pop("ATTEMPTLOCK_ONECONNECTION_DEFAULT_ENABLED", None)
            cfg = config.load_rule_config("oneconnection", config_path="")
        self.assertEqual(cfg.exempt_subnets, [ipaddress.ip_network("10.0.0.0/8")])
        self.assertTrue(cfg.default_enabled)

    def test_file_overrides_site_wide(self):
        self._write({"onesession": {"whitelist": "192.168.0.0/16", "defaultenabled": True}})
        with patch.object(config, "EXEMPT_SUBNETS", "10.0.0.0/8"):
            cfg = config.load_rule_config("onesession", config_path=self.path)
            other = config.load_rule_config("oneconnection", config_path=self.path)
        self.assertEqual(cfg.exempt_subnets, [ipaddress.ip_network("192.168.0.0/16")])
        self.assertTrue(cfg.default_enabled)
        self.assertEqual(other.exempt_subnets, [ipaddress.ip_network("10.0.0.0/8")])

    def test_env_overrides_file(self):
        self._write({"onesession": {"whitelist": "192.168.0.0/16", "defaultenabled": True}})
        env = {
            "ATTEMPTLOCK_ONESESSION_WHITELIST": "172.16.0.0/12",
            "ATTEMPTLOCK_ONESESSION_DEFAULT_ENABLED": "0",
        }
        with patch.dict(os.environ, env):
            cfg = config.load_rule_config("onesession", config_path=self.path)
        self.assertEqual(cfg.exempt_subnets, [ipaddress.ip_network("172.16.0.0/12")])
        self.assertFalse(cfg.default_enabled)

    def test_missing_file_is_empty(self):
        self.assertEqual(config.load_overrides(os.path.join(self._tmp.name, "absent.json")), {})

    def test_file_is_cached_until_invalidated(self):
        self._write({"oneconnection": {"whitelist": "10.0.0.0/8"}})
        self.assertEqual(config.load_overrides(self.path)["oneconnection"]["whitelist"], "10.0.0.0/8")
        self._write({"oneconnection": {"whitelist": "11.0.0.0/8"}})
        self.assertEqual(config.load_overrides(self.path)["oneconnection"]["whitelist"], "10.0.0.0/8")
        config.invalidate_config_cache()
        self.assertEqual(config.load_overrides(self.path)["oneconnection"]["whitelist"], "11.0.0.0/8")


class TestCachedConfig(unittest.TestCase):

    def test_expired_entries_reload(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "c.json")
            cache = config.CachedConfig(ttl_seconds=-1)
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"v": 1}, f)
            self.assertEqual(cache.get_json(path), {"v": 1})
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"v": 2}, f)
            self.assertEqual(cache.get_json(path), {"v": 2})


class TestCapabilities(unittest.TestCase):

    def test_parse_user_ids(self):
        self.assertEqual(config.parse_user_ids("1, 2,x,,-3, 4 "), {1, 2, 4})
        self.assertEqual(config.parse_user_ids(""), set())

    def test_grants_from_env(self):
        env = {"ATTEMPTLOCK_SUPERVISORS": "2,3", "ATTEMPTLOCK_EDITORS": "3"}
        with patch.dict(os.environ, env):
            grants = config.capability_grants()
        self.assertEqual(grants[2], {CAP_ALLOW_CHANGE})
        self.assertEqual(grants[3], {CAP_ALLOW_CHANGE, CAP_EDIT_ENABLED})


if __name__ == "__main__":
    unittest.main()
