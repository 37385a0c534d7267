"""Tests for the DESP wire framing."""

import pytest

from desperados.net.frame import (
    MAGIC,
    PING_FRAME,
    PONG_FRAME,
    Control,
    control_of,
    decode,
    encode,
)


class TestEncode:
    def test_prepends_magic(self):
        assert encode(b"hello") == b"DESPhello"

    def test_empty_payload(self):
        assert encode(b"") == MAGIC

    def test_control_frames(self):
        assert PING_FRAME == b"DESP!ping"
        assert PONG_FRAME == b"DESP!pong"
        assert len(PING_FRAME) == 9


class TestDecode:
    @pytest.mark.parametrize("data", [b"", b"D", b"DE", b"DES"])
    def test_too_short_is_not_a_frame(self, data):
        assert decode(data) is None

    @pytest.mark.parametrize("data", [b"XESPhello", b"desp!ping", b"DESX", b"\x00\x00\x00\x00"])
    def test_foreign_tag_is_not_a_frame(self, data):
        assert decode(data) is None

    def test_bare_magic_is_empty_payload(self):
        assert decode(b"DESP") == b""

    def test_strips_magic(self):
        assert decode(b"DESP\x00\xffbinary") == b"\x00\xffbinary"

    def test_accepts_bytearray(self):
        assert decode(bytearray(b"DESPabc")) == b"abc"


class TestControl:
    def test_ping_and_pong(self):
        assert control_of(b"!ping") is Control.PING
        assert control_of(b"!pong") is Control.PONG

    @pytest.mark.parametrize("payload", [b"", b"!pin", b"!pingx", b"!PING", b"hello"])
    def test_application_payloads(self, payload):
        assert control_of(payload) is None

    def test_control_string_payload_is_indistinguishable(self):
        # No type field: an application payload of "!ping" reads as a ping.
        assert control_of(decode(encode(b"!ping"))) is Control.PING
