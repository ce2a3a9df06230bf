import unittest

from storefront.auth import (
    LEGACY_STATIC_TOKEN,
    AdminCredential,
    AuthGate,
    TokenSigner,
    deobfuscate,
    obfuscate,
    parse_bearer,
)
from storefront.errors import AuthError, CredentialsNotReadyError, ValidationError
from storefront.store import InMemoryDatasetStore


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class ObfuscationTests(unittest.TestCase):
    def test_matches_legacy_encoding(self):
        # base64("admin") == "YWRtaW4=", reversed.
        self.assertEqual(obfuscate("admin"), "=4WatRWY")
        self.assertEqual(deobfuscate("=4WatRWY"), "admin")


class TokenSignerTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.signer = TokenSigner("secret", ttl_seconds=900, clock=self.clock)

    def test_issue_and_decode(self):
        token = self.signer.issue("admin")
        claims = self.signer.decode(token)
        self.assertEqual(claims["sub"], "admin")
        self.assertEqual(claims["exp"] - claims["iat"], 900)

    def test_tokens_are_unique_per_login(self):
        self.assertNotEqual(self.signer.issue("admin"), self.signer.issue("admin"))

    def test_expired_token_is_rejected(self):
        token = self.signer.issue("admin")
        self.clock.now += 901
        self.assertIsNone(self.signer.decode(token))

    def test_token_is_valid_up_to_its_ttl(self):
        token = self.signer.issue("admin")
        self.clock.now += 900
        self.assertEqual(self.signer.decode(token)["sub"], "admin")

    def test_tampered_or_foreign_tokens_are_rejected(self):
        token = self.signer.issue("admin")
        payload, _, signature = token.partition(".")
        self.assertIsNone(self.signer.decode(payload + "." + signature[::-1]))
        self.assertIsNone(TokenSigner("other", clock=self.clock).decode(token))
        self.assertIsNone(self.signer.decode("garbage"))
        self.assertIsNone(self.signer.decode(LEGACY_STATIC_TOKEN))


class ParseBearerTests(unittest.TestCase):
    def test_parse(self):
        self.assertEqual(parse_bearer("Bearer abc"), "abc")
        self.assertEqual(parse_bearer("bearer  abc "), "abc")
        self.assertIsNone(parse_bearer("Basic abc"))
        self.assertIsNone(parse_bearer("Bearer "))
        self.assertIsNone(parse_bearer(None))


class AuthGateTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryDatasetStore()
        self.gate = AuthGate(self.store, TokenSigner("secret"))

    def test_first_login_provisions_then_succeeds(self):
        with self.assertRaises(CredentialsNotReadyError):
            self.gate.login("admin", "admin123")
        stored = self.store.load().admin_credentials
        self.assertEqual(stored["scheme"], "bcrypt")
        self.assertNotIn("admin123", str(stored))

        token = self.gate.login("admin", "admin123")
        self.assertTrue(self.gate.verify(token))

    def test_wrong_credentials(self):
        self.gate.ensure_credentials()
        with self.assertRaises(AuthError):
            self.gate.login("admin", "nope")
        with self.assertRaises(AuthError):
            self.gate.login("root", "admin123")
        with self.assertRaises(AuthError):
            self.gate.login("", "")

    def test_ensure_credentials_is_idempotent(self):
        self.assertTrue(self.gate.ensure_credentials())
        self.assertFalse(self.gate.ensure_credentials())
        self.assertEqual(self.store.writes, 1)

    def test_legacy_credential_is_accepted_and_upgraded(self):
        self.store = InMemoryDatasetStore(
            record={
                "products": [{"id": 1, "title": "Tee"}],
                "admin_credentials": {
                    "username": obfuscate("admin"),
                    "password": obfuscate("admin123"),
                },
            }
        )
        gate = AuthGate(self.store, TokenSigner("secret"))
        token = gate.login("admin", "admin123")
        self.assertTrue(gate.verify(token))

        stored = self.store.load()
        self.assertEqual(stored.admin_credentials["scheme"], "bcrypt")
        self.assertEqual(len(stored.products), 1)
        self.assertTrue(gate.login("admin", "admin123"))

    def test_legacy_password_too_long_for_bcrypt_keeps_legacy_record(self):
        long_password = "p" * 80
        self.store = InMemoryDatasetStore(
            record={
                "admin_credentials": {
                    "username": obfuscate("admin"),
                    "password": obfuscate(long_password),
                },
            }
        )
        gate = AuthGate(self.store, TokenSigner("secret"))
        self.assertTrue(gate.verify(gate.login("admin", long_password)))
        self.assertEqual(self.store.writes, 0)
        self.assertNotIn("scheme", self.store.load().admin_credentials)

    def test_unreadable_credential_is_not_replaced(self):
        self.store = InMemoryDatasetStore(
            record={"admin_credentials": {"username": "%%%", "password": "x"}}
        )
        gate = AuthGate(self.store, TokenSigner("secret"))
        with self.assertRaises(AuthError):
            gate.login("admin", "admin123")
        self.assertEqual(self.store.writes, 0)

    def test_legacy_static_token_only_when_enabled(self):
        self.assertFalse(self.gate.verify(LEGACY_STATIC_TOKEN))
        legacy_gate = AuthGate(self.store, TokenSigner("secret"), allow_legacy_token=True)
        self.assertTrue(legacy_gate.verify(LEGACY_STATIC_TOKEN))
        self.assertFalse(legacy_gate.verify(None))

    def test_change_password(self):
        self.gate.ensure_credentials()
        with self.assertRaises(AuthError):
            self.gate.change_password("wrong", "new-secret")
        with self.assertRaises(ValidationError):
            self.gate.change_password("admin123", "123")
        self.gate.change_password("admin123", "new-secret")
        with self.assertRaises(AuthError):
            self.gate.login("admin", "admin123")
        self.assertTrue(self.gate.verify(self.gate.login("admin", "new-secret")))

    def test_credential_round_trip(self):
        credential = AdminCredential.create("admin", "pw123456")
        parsed = AdminCredential.from_record(credential.as_dict())
        self.assertTrue(parsed.matches("admin", "pw123456"))
        self.assertFalse(parsed.matches("admin", "pw"))


if __name__ == "__main__":
    unittest.main()
