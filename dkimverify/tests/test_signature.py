# This software is provided 'as-is', without any express or implied
# warranty.  In no event will the author be held liable for any damages
# arising from the use of this software.
#
# Permission is granted to anyone to use this software for any purpose,
# including commercial applications, and to alter it and redistribute it
# freely, subject to the following restrictions:
#
# 1. The origin of this software must not be misrepresented; you must not
#    claim that you wrote the original software. If you use this software
#    in a product, an acknowledgment in the product documentation would be
#    appreciated but is not required.
# 2. Altered source versions must be plainly marked as such, and must not be
#    misrepresented as being the original software.
# 3. This notice may not be removed or altered from any source distribution.
#
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

import unittest

from dkimverify.message import RawMessage
from dkimverify.signature import parse_signature, parse_signatures
from dkimverify.types import Reason
from dkimverify.util import PermanentFailure

NOW = 1500000000


def header(**tags):
    values = {
        'v': '1', 'a': 'rsa-sha256', 'c': 'relaxed/simple',
        'd': 'example.com', 's': 'sel1', 'h': 'from:to:subject',
        'bh': 'AAAA', 'b': 'AAAA',
        }
    values.update(tags)
    value = '; '.join(
        '%s=%s' % (k, v) for k, v in values.items() if v is not None)
    return (b'DKIM-Signature', (' ' + value + '\r\n').encode('ascii'))


class TestParseSignature(unittest.TestCase):

    def assertReason(self, reason, **tags):
        try:
            parse_signature(header(**tags), now=NOW)
        except PermanentFailure as e:
            self.assertEqual(reason, e.reason)
        else:
            self.fail("%s not raised" % reason.value)

    def test_valid(self):
        sig = parse_signature(header(i='joe@mail.example.com', l='10'),
                              now=NOW)
        self.assertEqual('example.com', sig.domain)
        self.assertEqual('example.com', sig.sdid)
        self.assertEqual('sel1', sig.selector)
        self.assertEqual('rsa-sha256', sig.algorithm)
        self.assertEqual('rsa', sig.key_type)
        self.assertEqual(['from', 'to', 'subject'], sig.signed_headers)
        self.assertEqual('relaxed/simple', sig.canonicalization.to_c_value())
        self.assertEqual('joe@mail.example.com', sig.auid)
        self.assertEqual('mail.example.com', sig.auid_domain)
        self.assertEqual(10, sig.length)
        self.assertEqual(b'\x00\x00\x00', sig.body_hash)

    def test_defaults(self):
        sig = parse_signature(header(c=None), now=NOW)
        self.assertEqual('simple/simple', sig.canonicalization.to_c_value())
        self.assertEqual('@example.com', sig.auid)
        self.assertIsNone(sig.length)
        self.assertEqual(('dns/txt',), sig.query_methods)

    def test_algorithm_is_case_insensitive(self):
        sig = parse_signature(header(a='RSA-SHA1'), now=NOW)
        self.assertEqual('rsa-sha1', sig.algorithm)

    def test_ed25519(self):
        sig = parse_signature(header(a='ed25519-sha256'), now=NOW)
        self.assertEqual('ed25519', sig.key_type)

    def test_folded_base64(self):
        sig = parse_signature(header(b='AA\r\n AA'), now=NOW)
        self.assertEqual(b'\x00\x00\x00', sig.signature)

    def test_unknown_tags_kept(self):
        sig = parse_signature(header(foo='bar'), now=NOW)
        self.assertEqual(b'bar', sig.tags[b'foo'])

    def test_missing_tags(self):
        for tag in ('v', 'a', 'b', 'bh', 'd', 'h', 's'):
            self.assertReason(Reason.MISSING_TAG, **{tag: None})

    def test_duplicate_tag(self):
        hdr = (b'DKIM-Signature', header()[1] + b'; d=example.net')
        self.assertRaises(PermanentFailure, parse_signature, hdr, NOW)

    def test_version(self):
        self.assertReason(Reason.UNSUPPORTED_VERSION, v='2')

    def test_algorithm(self):
        self.assertReason(Reason.UNSUPPORTED_ALGORITHM, a='rsa-md5')

    def test_canonicalization(self):
        self.assertReason(Reason.INVALID_CANONICALIZATION, c='nowsp')

    def test_bad_base64(self):
        self.assertReason(Reason.MALFORMED_SIGNATURE, b='!!!!')
        self.assertReason(Reason.MALFORMED_SIGNATURE, bh='AAA')

    def test_bad_domain(self):
        self.assertReason(Reason.MALFORMED_SIGNATURE, d='example..com')

    def test_from_not_signed(self):
        self.assertReason(Reason.FROM_NOT_SIGNED, h='to:subject')

    def test_empty_selector(self):
        self.assertReason(Reason.MALFORMED_SIGNATURE, s='')

    def test_identity_outside_domain(self):
        self.assertReason(Reason.IDENTITY_MISMATCH, i='joe@example.net')
        self.assertReason(Reason.IDENTITY_MISMATCH, i='joe@badexample.com')
        self.assertReason(Reason.IDENTITY_MISMATCH, i='example.com')

    def test_bad_length(self):
        self.assertReason(Reason.MALFORMED_SIGNATURE, l='-1')
        self.assertReason(Reason.MALFORMED_SIGNATURE, l='ten')

    def test_query_method(self):
        self.assertReason(Reason.UNSUPPORTED_QUERY_METHOD, q='http/get')
        sig = parse_signature(header(q='DNS/TXT'), now=NOW)
        self.assertEqual(('dns/txt',), sig.query_methods)

    def test_timestamp_in_future(self):
        self.assertReason(Reason.NOT_YET_VALID, t=str(NOW + 36001))
        sig = parse_signature(header(t=str(NOW + 36000)), now=NOW)
        self.assertEqual(NOW + 36000, sig.timestamp)

    def test_expired(self):
        self.assertReason(Reason.EXPIRED, t=str(NOW - 100),
                          x=str(NOW - 1))
        sig = parse_signature(header(x=str(NOW)), now=NOW)
        self.assertEqual(NOW, sig.expiration)

    def test_expiration_before_timestamp(self):
        self.assertReason(Reason.MALFORMED_SIGNATURE, t=str(NOW),
                          x=str(NOW - 10))

    def test_copied_headers(self):
        sig = parse_signature(
            header(z='From:foo@example.com|To:bar@example.com'), now=NOW)
        self.assertEqual(
            [b'From:foo@example.com', b'To:bar@example.com'],
            sig.copied_headers)


class TestParseSignatures(unittest.TestCase):

    def test_order_and_failures(self):
        first = header(d='one.example')
        second = header(v='2')
        third = header(d='three.example')
        message = RawMessage.parse(
            b''.join(x[0] + b':' + x[1] for x in (first, second, third))
            + b'From: a@example.com\r\n\r\nbody\r\n')
        parsed = parse_signatures(message, now=NOW)
        self.assertEqual(3, len(parsed))
        self.assertEqual('one.example', parsed[0][1].domain)
        self.assertIsInstance(parsed[1][1], PermanentFailure)
        self.assertEqual(Reason.UNSUPPORTED_VERSION, parsed[1][1].reason)
        self.assertEqual('three.example', parsed[2][1].domain)

    def test_no_signatures(self):
        message = RawMessage.parse(b'From: a@example.com\r\n\r\n')
        self.assertEqual([], parse_signatures(message))


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
