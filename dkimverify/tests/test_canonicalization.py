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

from dkimverify.canonicalization import (
    canonicalize,
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    Relaxed,
    select_headers,
    Simple,
    strip_b_value,
    )
from dkimverify.message import RawMessage
from dkimverify.signature import parse_signature


class BaseCanonicalizationTest(unittest.TestCase):

    def assertCanonicalForm(self, expected, input):
        self.assertEqual(expected, self.func(expected))
        self.assertEqual(expected, self.func(input))


class TestSimpleAlgorithmHeaders(BaseCanonicalizationTest):

    func = staticmethod(Simple.canonicalize_headers)

    def test_untouched(self):
        test_headers = [(b'Foo  ', b'bar\r\n'), (b'Foo', b'baz\r\n')]
        self.assertCanonicalForm(
            test_headers,
            test_headers)


class TestSimpleAlgorithmBody(BaseCanonicalizationTest):

    func = staticmethod(Simple.canonicalize_body)

    def test_strips_trailing_empty_lines_from_body(self):
        self.assertCanonicalForm(
            b'Foo  \tbar    \r\n',
            b'Foo  \tbar    \r\n\r\n')

    def test_adds_missing_final_crlf(self):
        self.assertCanonicalForm(b'Foo\r\n', b'Foo')

    def test_empty_body_stays_empty(self):
        self.assertCanonicalForm(b'', b'\r\n\r\n')


class TestRelaxedAlgorithmHeaders(BaseCanonicalizationTest):

    func = staticmethod(Relaxed.canonicalize_headers)

    def test_lowercases_names(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar\r\n'), (b'baz', b'Foo\r\n')],
            [(b'Foo', b'Bar\r\n'), (b'BaZ', b'Foo\r\n')])

    def test_unfolds_values(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar baz\r\n')],
            [(b'Foo', b'Bar\r\n baz\r\n')])

    def test_wsp_compresses_values(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar baz\r\n')],
            [(b'Foo', b'Bar \t baz\r\n')])

    def test_wsp_strips(self):
        self.assertCanonicalForm(
            [(b'foo', b'Bar baz\r\n')],
            [(b'Foo  ', b'   Bar \t baz   \r\n')])


class TestRelaxedAlgorithmBody(BaseCanonicalizationTest):

    func = staticmethod(Relaxed.canonicalize_body)

    def test_strips_trailing_wsp(self):
        self.assertCanonicalForm(
            b'Foo\r\nbar\r\n',
            b'Foo  \t\r\nbar\r\n')

    def test_wsp_compresses(self):
        self.assertCanonicalForm(
            b'Foo bar\r\n',
            b'Foo  \t  bar\r\n')

    def test_strips_trailing_empty_lines(self):
        self.assertCanonicalForm(
            b'Foo\r\nbar\r\n',
            b'Foo\r\nbar\r\n\r\n\r\n')

    def test_whitespace_only_body_is_empty(self):
        self.assertCanonicalForm(b'', b' \t\r\n\r\n')


class TestCanonicalizationPolicy(unittest.TestCase):

    def test_default_is_simple(self):
        policy = CanonicalizationPolicy.from_c_value(None)
        self.assertEqual('simple/simple', policy.to_c_value())

    def test_single_value_means_simple_body(self):
        policy = CanonicalizationPolicy.from_c_value(b'relaxed')
        self.assertIs(Relaxed, policy.header_algorithm)
        self.assertIs(Simple, policy.body_algorithm)

    def test_both_values(self):
        policy = CanonicalizationPolicy.from_c_value('simple/relaxed')
        self.assertIs(Simple, policy.header_algorithm)
        self.assertIs(Relaxed, policy.body_algorithm)

    def test_unknown_algorithm(self):
        self.assertRaises(
            InvalidCanonicalizationPolicyError,
            CanonicalizationPolicy.from_c_value, 'relaxed/nowsp')

    def test_too_many_values(self):
        self.assertRaises(
            InvalidCanonicalizationPolicyError,
            CanonicalizationPolicy.from_c_value, 'simple/simple/simple')

    def test_equality(self):
        self.assertEqual(
            CanonicalizationPolicy.from_c_value('relaxed'),
            CanonicalizationPolicy.from_c_value('relaxed/simple'))


class TestSelectHeaders(unittest.TestCase):

    headers = [
        (b'Received', b' one\r\n'),
        (b'From', b' a@example.com\r\n'),
        (b'Received', b' two\r\n'),
        (b'Subject', b' hi\r\n'),
        ]

    def test_repeated_names_are_taken_bottom_up(self):
        self.assertEqual(
            [(b'Received', b' two\r\n'), (b'Received', b' one\r\n')],
            select_headers(self.headers, [b'received', b'received']))

    def test_missing_instances_select_nothing(self):
        self.assertEqual(
            [(b'Subject', b' hi\r\n')],
            select_headers(self.headers, [b'subject', b'subject', b'to']))


class TestStripBValue(unittest.TestCase):

    def test_empties_b_only(self):
        self.assertEqual(
            b' v=1; bh=abc=; b=; d=example.com',
            strip_b_value(b' v=1; bh=abc=; b=ZGVm\r\n Z2hp; d=example.com'))

    def test_drops_trailing_crlf(self):
        self.assertEqual(b' v=1; b=', strip_b_value(b' v=1; b=ZGVm\r\n'))


class TestCanonicalize(unittest.TestCase):

    message = (
        b'From: Joe <joe@example.com>\r\n'
        b'Subject:  Hello   there \r\n'
        b'\r\n'
        b'Hi  there.  \r\n'
        b'\r\n'
        b'\r\n')

    def signature(self, tags):
        header = (b'DKIM-Signature', b' v=1; a=rsa-sha256; d=example.com;'
                  b' s=sel; ' + tags + b' bh=AAAA; b=AAAA\r\n')
        return parse_signature(header, now=0)

    def test_relaxed_form(self):
        msg = RawMessage.parse(self.message)
        sig = self.signature(b'c=relaxed/relaxed; h=from:subject;')
        form = canonicalize(msg, sig)
        self.assertEqual(
            b'from:Joe <joe@example.com>\r\n'
            b'subject:Hello there\r\n'
            b'dkim-signature:v=1; a=rsa-sha256; d=example.com; s=sel;'
            b' c=relaxed/relaxed; h=from:subject; bh=AAAA; b=',
            form.headers)
        self.assertEqual(b'Hi there.\r\n', form.body)
        self.assertEqual(11, form.body_length)

    def test_body_length_truncates(self):
        msg = RawMessage.parse(self.message)
        sig = self.signature(b'h=from; l=2;')
        form = canonicalize(msg, sig)
        self.assertEqual(b'Hi', form.body)
        self.assertEqual(len(b'Hi  there.  \r\n'), form.body_length)

    def test_idempotent(self):
        # Canonicalizing a canonical body changes nothing.
        for algorithm in (Simple, Relaxed):
            once = algorithm.canonicalize_body(self.message)
            self.assertEqual(once, algorithm.canonicalize_body(once))

    def test_extra_from_is_selected(self):
        msg = RawMessage.parse(
            b'From: evil@example.net\r\n' + self.message)
        sig = self.signature(b'h=from;')
        form = canonicalize(msg, sig)
        self.assertEqual(2, len(form.signed_headers))
        form = canonicalize(msg, sig, extra_from=False)
        self.assertEqual(1, len(form.signed_headers))


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
