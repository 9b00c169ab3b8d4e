"""Tests for QNAME extraction from wire-format queries."""
import dns.message
import pytest

from dohGuard.filtering.wire import extract_domain

HEADER = bytes.fromhex("abcd01000001000000000000")
WWW_EXAMPLE_COM = bytes.fromhex("03777777076578616d706c6503636f6d00")


def test_extracts_www_example_com():
    assert extract_domain(HEADER + WWW_EXAMPLE_COM + b"\x00\x01\x00\x01") == "www.example.com"


def test_extracts_name_from_real_query():
    wire = dns.message.make_query("tracker.ads.example.com", "AAAA").to_wire()
    assert extract_domain(wire) == "tracker.ads.example.com"


def test_query_with_edns_record():
    wire = dns.message.make_query("example.org", "A", use_edns=0).to_wire()
    assert extract_domain(wire) == "example.org"


def test_name_is_lowercased():
    wire = dns.message.make_query("WWW.Example.COM", "A").to_wire()
    assert extract_domain(wire) == "www.example.com"


@pytest.mark.parametrize("size", [0, 1, 11, 12])
def test_short_buffers_fail(size):
    assert extract_domain(HEADER[:size]) is None


def test_truncated_label_fails():
    # 0x07 announces seven bytes but only three follow
    assert extract_domain(HEADER + b"\x03www\x07exa") is None


def test_label_exactly_at_end_without_terminator_fails():
    assert extract_domain(HEADER + b"\x03www") is None


def test_root_name_is_empty_string():
    assert extract_domain(HEADER + b"\x00\x00\x01\x00\x01") == ""


def test_pointer_first_is_empty_string():
    assert extract_domain(HEADER + b"\xc0\x0c") == ""


def test_pointer_ends_name_without_following():
    buf = HEADER + b"\x03www\xc0\x0c" + b"\x07example\x03com\x00"
    assert extract_domain(buf) == "www"


def test_pointer_loop_is_not_followed():
    # Pointer to itself at offset 12
    assert extract_domain(HEADER + b"\x03abc\xc0\x0c") == "abc"


def test_non_utf8_label_does_not_raise():
    result = extract_domain(HEADER + b"\x02\xff\xfe\x03com\x00")
    assert result is not None
    assert result.endswith(".com")


def test_memoryview_input():
    wire = dns.message.make_query("example.net", "A").to_wire()
    assert extract_domain(memoryview(wire)) == "example.net"


def test_does_not_modify_input():
    wire = bytearray(HEADER + WWW_EXAMPLE_COM)
    before = bytes(wire)
    extract_domain(wire)
    assert bytes(wire) == before
