"""Tests for the cached configuration loader."""

from __future__ import annotations

import os
import unittest
from unittest import mock

from config import settings as settings_module


class GetSettingsTest(unittest.TestCase):
    def setUp(self) -> None:
        settings_module.get_settings.cache_clear()
        self.addCleanup(settings_module.get_settings.cache_clear)

    def test_reads_environment(self) -> None:
        env = {"SELLHUB_API_KEY": "env-key", "SELLHUB_STORE_URL": "https://env.sellhub.cx/"}
        with mock.patch.dict(os.environ, env):
            loaded = settings_module.get_settings()
        self.assertEqual(loaded.sellhub_api_key, "env-key")
        self.assertEqual(loaded.sellhub_store_url, "https://env.sellhub.cx")
        self.assertEqual(loaded.store_slug, "env")

    def test_invalid_value_is_logged_before_falling_back(self) -> None:
        with mock.patch.dict(os.environ, {"SELLHUB_REQUEST_TIMEOUT": "soon"}):
            with self.assertLogs(settings_module.LOGGER, level="ERROR") as logs:
                loaded = settings_module.get_settings()
        self.assertIn("Invalid configuration", logs.output[0])
        self.assertIsNotNone(logs.records[0].exc_info)
        self.assertIn("sellhub_request_timeout", str(logs.records[0].exc_info[1]))
        self.assertEqual(loaded.sellhub_request_timeout, 15.0)


if __name__ == "__main__":
    unittest.main()
