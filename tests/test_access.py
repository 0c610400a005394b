import ipaddress

import pytest

from lbproxy.access import Access, parse_access_rule


def test_parse_ip_rule():
    rule = parse_access_rule("allow 10.0.0.1")
    assert rule.allow is True
    assert rule.is_network is False
    assert rule.ip == ipaddress.ip_address("10.0.0.1")


def test_parse_network_rule_masks_host_bits():
    rule = parse_access_rule("deny 192.168.1.5/24")
    assert rule.allow is False
    assert rule.is_network is True
    assert rule.matches("192.168.1.200")
    assert not rule.matches("192.168.2.1")


@pytest.mark.parametrize(
    "text",
    ["allow", "allow  10.0.0.1", "permit 10.0.0.1", "allow not-an-ip", "deny 10.0.0.0/99"],
)
def test_invalid_rules(text):
    with pytest.raises(ValueError):
        parse_access_rule(text)


def test_ip_rule_matches_ipv4_mapped_address():
    rule = parse_access_rule("allow 10.0.0.1")
    assert rule.matches("::ffff:10.0.0.1")
    assert not rule.matches("10.0.0.2")


def test_ipv6_network_does_not_match_ipv4():
    rule = parse_access_rule("allow 2001:db8::/32")
    assert rule.matches("2001:db8::5")
    assert not rule.matches("10.0.0.1")


def test_first_matching_rule_wins():
    access = Access.from_rules(["deny 10.0.0.1", "allow 10.0.0.0/8"], "deny")
    assert access.allows("10.0.0.1") is False
    assert access.allows("10.1.2.3") is True
    assert access.allows("11.0.0.1") is False


def test_empty_default_means_allow():
    access = Access.from_rules([])
    assert access.allow_default is True
    assert access.allows("1.2.3.4") is True


def test_deny_default():
    access = Access.from_rules(["allow 127.0.0.1"], "deny")
    assert access.allows(ipaddress.ip_address("127.0.0.1")) is True
    assert access.allows("127.0.0.2") is False


def test_unexpected_default():
    with pytest.raises(ValueError, match="Unexpected Default: maybe"):
        Access.from_rules([], "maybe")


def test_bad_rule_in_chain_raises():
    with pytest.raises(ValueError):
        Access.from_rules(["allow 127.0.0.1", "bogus"])