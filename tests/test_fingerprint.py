"""
Fingerprint construction and exempt-subnet matching.
"""

import ipaddress
import unittest

from attemptlock.fingerprint import (
    RequestContext,
    address_in_subnets,
    build_fingerprint,
    fingerprint_for,
    parse_subnets,
)


class TestBuildFingerprint(unittest.TestCase):

    def test_parts_concatenated_in_order_without_delimiter(self):
        fp = build_fingerprint("abc123", "10.0.0.5", "Mozilla/5.0")
        self.assertEqual(fp, "abc12310.0.0.5Mozilla/5.0")

    def test_missing_parts_are_empty(self):
        self.assertEqual(build_fingerprint(None, None, None), "")
        self.assertEqual(build_fingerprint("abc", None, None), "abc")
        self.assertEqual(build_fingerprint("abc", "", "UA"), "abcUA")

    def test_exempt_subnet_drops_ip(self):
        subnets = parse_subnets("88.0.0.0/8")
        fp = build_fingerprint("abc", "88.1.2.3", "UA", subnets)
        self.assertEqual(fp, "abcUA")

    def test_ip_change_inside_exempt_subnet_keeps_fingerprint(self):
        subnets = parse_subnets("88.0.0.0/8, 77.77.0.0/16")
        a = build_fingerprint("abc", "88.1.2.3", "UA", subnets)
        b = build_fingerprint("abc", "88.200.0.1", "UA", subnets)
        self.assertEqual(a, b)

    def test_ip_outside_exempt_subnet_is_kept(self):
        subnets = parse_subnets("88.0.0.0/8")
        a = build_fingerprint("abc", "89.1.2.3", "UA", subnets)
        b = build_fingerprint("abc", "89.1.2.4", "UA", subnets)
        self.assertNotEqual(a, b)

    def test_user_agent_change_changes_fingerprint(self):
        a = build_fingerprint("abc", "10.0.0.5", "Firefox")
        b = build_fingerprint("abc", "10.0.0.5", "Chrome")
        self.assertNotEqual(a, b)

    def test_fingerprint_for_context(self):
        ctx = RequestContext(session_token="s", client_ip="10.0.0.5", user_agent="UA")
        self.assertEqual(fingerprint_for(ctx), "s10.0.0.5UA")
        self.assertEqual(fingerprint_for(ctx, parse_subnets("10.0.0.0/24")), "sUA")


class TestSubnets(unittest.TestCase):

    def test_parse_mixed_separators(self):
        nets = parse_subnets("10.0.0.0/8,192.168.1.0/24  2001:db8::/32")
        self.assertEqual(len(nets), 3)
        self.assertIn(ipaddress.ip_network("2001:db8::/32"), nets)

    def test_bare_address_is_single_host(self):
        nets = parse_subnets("10.1.2.3")
        self.assertEqual(nets, [ipaddress.ip_network("10.1.2.3/32")])

    def test_host_bits_are_tolerated(self):
        nets = parse_subnets("10.1.2.3/8")
        self.assertEqual(nets, [ipaddress.ip_network("10.0.0.0/8")])

    def test_invalid_entries_skipped_and_logged(self):
        with self.assertLogs("attemptlock.fingerprint", level="WARNING") as cm:
            nets = parse_subnets("10.0.0.0/8, not-a-subnet, 300.1.1.1/8")
        self.assertEqual(nets, [ipaddress.ip_network("10.0.0.0/8")])
        self.assertEqual(len(cm.records), 2)

    def test_empty_inputs(self):
        self.assertEqual(parse_subnets(None), [])
        self.assertEqual(parse_subnets(""), [])
        self.assertEqual(parse_subnets([]), [])

    def test_iterable_input(self):
        nets = parse_subnets(["10.0.0.0/8", " "])
        self.assertEqual(len(nets), 1)

    def test_address_matching(self):
        nets = parse_subnets("10.0.0.0/8")
        self.assertTrue(address_in_subnets("10.20.30.40", nets))
        self.assertFalse(address_in_subnets("11.0.0.1", nets))
        self.assertFalse(address_in_subnets("garbage", nets))
        self.assertFalse(address_in_subnets(None, nets))
        self.assertFalse(address_in_subnets("10.0.0.1", []))

    def test_mixed_families_never_match(self):
        nets = parse_subnets("10.0.0.0/8")
        self.assertFalse(address_in_subnets("::1", nets))
        nets6 = parse_subnets("2001:db8::/32")
        self.assertTrue(address_in_subnets("2001:db8::1", nets6))
        self.assertFalse(address_in_subnets("10.0.0.1", nets6))


if __name__ == "__main__":
    unittest.main()
