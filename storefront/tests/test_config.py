import unittest

from pydantic import ValidationError

from storefront.config import Settings


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = Settings(_env_file=None)
        self.assertEqual(settings.store_max_attempts, 3)
        self.assertEqual(settings.default_admin_password, "admin123")

    def test_store_attempts_are_bounded(self):
        for attempts in (1, 2, 6):
            with self.assertRaises(ValidationError):
                Settings(_env_file=None, store_max_attempts=attempts)
        self.assertEqual(Settings(_env_file=None, store_max_attempts=5).store_max_attempts, 5)

    def test_default_password_must_fit_bcrypt(self):
        with self.assertRaises(ValidationError):
            Settings(_env_file=None, default_admin_password="p" * 73)
        with self.assertRaises(ValidationError):
            Settings(_env_file=None, default_admin_password="short")
        # Multi-byte characters count by their UTF-8 length.
        with self.assertRaises(ValidationError):
            Settings(_env_file=None, default_admin_password="é" * 40)

    def test_backend_detection(self):
        settings = Settings(_env_file=None, database_url="sqlite://", jsonbin_bin_id="b")
        self.assertEqual(settings.resolved_store_backend(), "sql")
        settings = Settings(_env_file=None, use_in_memory_backends=True, database_url="sqlite://")
        self.assertEqual(settings.resolved_store_backend(), "memory")


if __name__ == "__main__":
    unittest.main()
