"""
Unit tests for Mercado Pago x-signature verification.
"""

import hashlib
import hmac

from now24.blueprints.webhooks import parse_signature_header, build_signature_manifest, verify_mp_signature

SECRET = 'whsec_test'


def sign(data_id, request_id, ts):
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    return hmac.new(SECRET.encode(), manifest.encode(), hashlib.sha256).hexdigest()


class TestSignature:
    def test_parse_header(self):
        assert parse_signature_header('ts=1704908010,v1=abc') == {'ts': '1704908010', 'v1': 'abc'}
        assert parse_signature_header(' ts = 1 , v1 = x ') == {'ts': '1', 'v1': 'x'}
        assert parse_signature_header('') == {}

    def test_manifest(self):
        assert build_signature_manifest('123', 'req-1', '99') == 'id:123;request-id:req-1;ts:99;'
        assert build_signature_manifest('ABC1', '', '99') == 'id:abc1;ts:99;'

    def test_valid_signature(self):
        header = f"ts=1704908010,v1={sign('123456', 'req-abc', '1704908010')}"
        assert verify_mp_signature(SECRET, header, 'req-abc', '123456')

    def test_tampered_resource_id(self):
        header = f"ts=1704908010,v1={sign('123456', 'req-abc', '1704908010')}"
        assert not verify_mp_signature(SECRET, header, 'req-abc', '999999')

    def test_wrong_secret(self):
        header = f"ts=1,v1={sign('1', 'r', '1')}"
        assert not verify_mp_signature('other', header, 'r', '1')

    def test_missing_parts(self):
        assert not verify_mp_signature(SECRET, 'v1=abc', 'r', '1')
        assert not verify_mp_signature(SECRET, '', 'r', '1')
