import unittest

from app import create_app
from config import ConfigurationError, CookieOptions, TestingConfig


class MissingKeyConfig(TestingConfig):
    BACKEND_KEY = None


class MissingBackendConfig(TestingConfig):
    BACKEND_URL = None
    BACKEND_KEY = ""


class ConfigTests(unittest.TestCase):
    def test_missing_backend_key_is_fatal(self):
        with self.assertRaises(ConfigurationError) as ctx:
            create_app(MissingKeyConfig)
        self.assertIn("BACKEND_KEY", str(ctx.exception))

    def test_all_missing_settings_are_reported(self):
        with self.assertRaises(ConfigurationError) as ctx:
            MissingBackendConfig.validate()
        self.assertIn("BACKEND_URL", str(ctx.exception))
        self.assertIn("BACKEND_KEY", str(ctx.exception))

    def test_cookie_defaults(self):
        options = CookieOptions()
        self.assertEqual(options.path, "/")
        self.assertTrue(options.httponly)
        self.assertTrue(options.secure)
        self.assertEqual(options.samesite, "Lax")
        self.assertIsNone(options.domain)


if __name__ == "__main__":
    unittest.main()
