"""
Lock codec, issuance and fail-closed validation.
"""

import hashlib
import hmac
import unittest
from unittest.mock import patch

from attemptlock.errors import MalformedLockRecord, SecretGenerationError
from attemptlock.models import AttemptLock
from attemptlock.validator import (
    SECRET_BYTES,
    compute_mac,
    encode_lock_value,
    generate_secret,
    issue_lock,
    parse_lock_value,
    validate,
    validate_lock_value,
)

FP = "abc12310.0.0.5Mozilla/5.0"


class TestLockFormat(unittest.TestCase):

    def test_issued_value_layout(self):
        lock = issue_lock(1, 7, FP)
        secret_hex, mac = lock.session_hash.split("|")
        self.assertEqual(len(secret_hex), SECRET_BYTES * 2)
        self.assertEqual(len(mac), 64)
        self.assertEqual(mac, mac.lower())
        self.assertEqual(lock.fingerprint_mac, mac)
        self.assertEqual(lock.secret, bytes.fromhex(secret_hex))

    def test_mac_is_hmac_sha256_over_fingerprint(self):
        secret = bytes(range(16))
        expected = hmac.new(secret, FP.encode("utf-8"), hashlib.sha256).hexdigest()
        self.assertEqual(compute_mac(secret, FP), expected)
        self.assertNotEqual(compute_mac(secret, "a"), compute_mac(secret, "b"))

    def test_fresh_secret_per_lock(self):
        a = issue_lock(1, 7, FP)
        b = issue_lock(1, 7, FP)
        self.assertNotEqual(a.session_hash, b.session_hash)

    def test_parse_round_trip(self):
        secret = generate_secret()
        value = encode_lock_value(secret, compute_mac(secret, FP))
        parsed_secret, mac = parse_lock_value(value)
        self.assertEqual(parsed_secret, secret)
        self.assertEqual(mac, compute_mac(secret, FP))

    def test_extra_separator_stays_in_mac_segment(self):
        _, mac = parse_lock_value("00ff|abc|def")
        self.assertEqual(mac, "abc|def")


class TestValidation(unittest.TestCase):

    def test_same_fingerprint_matches(self):
        lock = issue_lock(1, 7, FP)
        self.assertTrue(validate(lock, FP))

    def test_different_fingerprint_does_not_match(self):
        lock = issue_lock(1, 7, FP)
        self.assertFalse(validate(lock, FP + "x"))
        self.assertFalse(validate(lock, ""))

    def test_any_changed_character_does_not_match(self):
        lock = issue_lock(1, 7, FP)
        for i in range(len(FP)):
            changed = FP[:i] + chr(ord(FP[i]) ^ 1) + FP[i + 1:]
            self.assertFalse(validate(lock, changed), changed)

    def test_tampered_mac_does_not_match(self):
        lock = issue_lock(1, 7, FP)
        secret_hex, mac = lock.session_hash.split("|")
        flipped = ("0" if mac[0] != "0" else "1") + mac[1:]
        self.assertFalse(validate_lock_value(f"{secret_hex}|{flipped}", FP))

    def test_malformed_values_fail_closed(self):
        cases = [
            ("", "empty value"),
            ("deadbeef", "missing separator"),
            ("|abcdef", "empty segment"),
            ("deadbeef|", "empty segment"),
            ("zz|abcdef", "secret is not valid hex"),
            ("abc|abcdef", "secret is not valid hex"),
            ("abc\n|abcdef", "secret is not valid hex"),
            ("00ff\n|abcdef", "secret is not valid hex"),
        ]
        for value, reason in cases:
            with self.subTest(value=value):
                with self.assertRaises(MalformedLockRecord) as cm:
                    parse_lock_value(value, attempt_id=5)
                self.assertEqual(cm.exception.reason, reason)
                self.assertEqual(cm.exception.attempt_id, 5)
                with self.assertLogs("attemptlock.audit", level="WARNING"):
                    self.assertFalse(validate_lock_value(value, FP, attempt_id=5))

    def test_undecodable_secret_is_malformed(self):
        with patch("attemptlock.validator.is_even_hex", return_value=True):
            with self.assertRaises(MalformedLockRecord) as cm:
                parse_lock_value("zz|abcdef", attempt_id=5)
            self.assertEqual(cm.exception.reason, "secret is not valid hex")
            with self.assertLogs("attemptlock.audit", level="WARNING"):
                self.assertFalse(validate_lock_value("zz|abcdef", FP, attempt_id=5))

    def test_none_value_fails_closed(self):
        with self.assertLogs("attemptlock.audit", level="WARNING"):
            self.assertFalse(validate_lock_value(None, FP))

    def test_corrupt_stored_lock(self):
        lock = AttemptLock(attempt_id=1, quiz_id=7, session_hash="garbage")
        with self.assertLogs("attemptlock.audit", level="WARNING"):
            self.assertFalse(validate(lock, FP))
        with self.assertRaises(MalformedLockRecord):
            lock.secret


class TestSecretGeneration(unittest.TestCase):

    def test_secret_length(self):
        self.assertEqual(len(generate_secret()), SECRET_BYTES)

    def test_rng_failure_raises(self):
        with patch("attemptlock.validator.secrets.token_bytes", side_effect=OSError("no entropy")):
            with self.assertRaises(SecretGenerationError):
                issue_lock(1, 7, FP)


if __name__ == "__main__":
    unittest.main()
