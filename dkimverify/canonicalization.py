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
# Copyright (c) 2008 Greg Hewgill http://hewgill.com
#
# This has been modified from the original software.
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

import re

__all__ = [
    'CanonicalForm',
    'CanonicalizationPolicy',
    'canonicalize',
    'InvalidCanonicalizationPolicyError',
    'Relaxed',
    'select_headers',
    'Simple',
    ]


class InvalidCanonicalizationPolicyError(Exception):
    """The c= value could not be parsed."""
    pass


def strip_trailing_lines(content):
    """Remove trailing empty lines and end the content with one CRLF.

    An empty body stays empty.
    """
    content = re.sub(b"(\r\n)*$", b"", content)
    if content:
        content += b"\r\n"
    return content


class Simple:
    """Class that represents the "simple" canonicalization algorithm."""

    name = "simple"

    @staticmethod
    def canonicalize_headers(headers):
        # No changes to headers.
        return headers

    @staticmethod
    def canonicalize_body(body):
        # Ignore all empty lines at the end of the message body.
        return strip_trailing_lines(body)


class Relaxed:
    """Class that represents the "relaxed" canonicalization algorithm."""

    name = "relaxed"

    @staticmethod
    def canonicalize_headers(headers):
        # Convert all header field names to lowercase.
        # Unfold all header lines.
        # Compress WSP to single space.
        # Remove all WSP at the start or end of the field value (strip).
        return [
            (x[0].lower().rstrip(),
             re.sub(br"[\x09\x20]+", b" ",
                    re.sub(b"\r\n", b"", x[1])).strip(b" ")
             + b"\r\n")
            for x in headers]

    @staticmethod
    def canonicalize_body(body):
        # Remove all trailing WSP at end of lines.
        removed_trailing_wsp = re.sub(b"[\\x09\\x20]+\r\n", b"\r\n", body)
        removed_trailing_wsp = re.sub(
            b"[\\x09\\x20]+$", b"", removed_trailing_wsp)
        # Compress non-line-ending WSP to single space.
        compressed_wsp = re.sub(br"[\x09\x20]+", b" ", removed_trailing_wsp)
        # Ignore all empty lines at the end of the message body.
        return strip_trailing_lines(compressed_wsp)


algorithms = dict((c.name, c) for c in (Simple, Relaxed))


class CanonicalizationPolicy(object):
    """The header and body algorithms named by a c= tag."""

    def __init__(self, header_algorithm, body_algorithm):
        self.header_algorithm = header_algorithm
        self.body_algorithm = body_algorithm

    @classmethod
    def from_c_value(cls, c):
        """Construct the canonicalization policy described by a c= value.

        May raise an C{InvalidCanonicalizationPolicyError} if the given
        value is invalid.

        @param c: c= value from a DKIM-Signature header field, or None
        @return: a L{CanonicalizationPolicy}
        """
        if c is None:
            c = 'simple/simple'
        if isinstance(c, bytes):
            c = c.decode('ascii', 'replace')
        m = c.strip().split('/')
        if len(m) not in (1, 2):
            raise InvalidCanonicalizationPolicyError(c)
        if len(m) == 1:
            m.append('simple')
        can_headers, can_body = m
        try:
            header_algorithm = algorithms[can_headers]
            body_algorithm = algorithms[can_body]
        except KeyError as e:
            raise InvalidCanonicalizationPolicyError(e.args[0])
        return cls(header_algorithm, body_algorithm)

    def to_c_value(self):
        return '/'.join(
            (self.header_algorithm.name, self.body_algorithm.name))

    def canonicalize_headers(self, headers):
        return self.header_algorithm.canonicalize_headers(headers)

    def canonicalize_body(self, body):
        return self.body_algorithm.canonicalize_body(body)

    def __eq__(self, other):
        return (isinstance(other, CanonicalizationPolicy)
                and self.to_c_value() == other.to_c_value())

    def __hash__(self):
        return hash(self.to_c_value())

    def __repr__(self):
        return 'CanonicalizationPolicy(%r)' % self.to_c_value()


def select_headers(headers, include_headers):
    """Select message header fields to be signed/verified.

    >>> h = [(b'from',b'biz'),(b'foo',b'bar'),(b'from',b'baz'),(b'subject',b'boring')]
    >>> i = [b'from',b'subject',b'to',b'from']
    >>> select_headers(h,i)
    [(b'from', b'baz'), (b'subject', b'boring'), (b'from', b'biz')]
    >>> h = [(b'From',b'biz'),(b'Foo',b'bar'),(b'Subject',b'Boring')]
    >>> i = [b'from',b'subject',b'to',b'from']
    >>> select_headers(h,i)
    [(b'From', b'biz'), (b'Subject', b'Boring')]
    """
    sign_headers = []
    lastindex = {}
    for h in include_headers:
        assert h == h.lower()
        i = lastindex.get(h, len(headers))
        while i > 0:
            i -= 1
            if h == headers[i][0].lower().rstrip():
                sign_headers.append(headers[i])
                break
        lastindex[h] = i
    return sign_headers


# FWS  =  ([*WSP CRLF] 1*WSP) /  obs-FWS ; Folding white space  [RFC5322]
FWS = br'(?:(?:\s*\r?\n)?\s+)?'
RE_BTAG = re.compile(
    br'([;\s]b' + FWS + br'=)(?:' + FWS + br'[a-zA-Z0-9+/=])*(?:\r?\n\Z)?')


def strip_b_value(value):
    """Empty the b= tag of a signature header field value."""
    return RE_BTAG.sub(b'\\1', value)


class CanonicalForm(object):
    """Canonical header block and body bytes for one signature."""

    def __init__(self, headers, body, signed_headers, body_length):
        self.headers = headers
        self.body = body
        #: the original header fields selected by h=, in hash order
        self.signed_headers = signed_headers
        #: length of the canonical body before l= truncation
        self.body_length = body_length


def canonicalize(message, signature, extra_from=True):
    """Build the canonical form a signature covers.

    @param message: a L{dkimverify.message.RawMessage}
    @param signature: a L{dkimverify.signature.Signature}
    @param extra_from: select one more From: field than h= lists, so that
    a From: added after signing breaks the signature
    @return: a L{CanonicalForm}
    """
    policy = signature.canonicalization
    include_headers = [x.encode('ascii') for x in signature.signed_headers]
    # address bug#644046 by including any additional From header
    # fields when verifying.  Since there should be only one From header,
    # this shouldn't break any legitimate messages.
    if extra_from and b'from' in include_headers:
        include_headers.append(b'from')
    sign_headers = select_headers(message.headers, include_headers)
    # The signature field itself is hashed last with an empty b= and no
    # trailing CRLF, even if the canonicalization would add one.
    sig_header = (signature.header[0], strip_b_value(signature.header[1]))
    cheaders = policy.canonicalize_headers(sign_headers)
    csig = policy.canonicalize_headers([sig_header])
    block = b''.join(
        x + b":" + y for x, y in
        cheaders + [(x, y.rstrip(b"\r\n")) for x, y in csig])

    body = policy.canonicalize_body(message.body)
    body_length = len(body)
    if signature.length is not None:
        body = body[:signature.length]
    return CanonicalForm(block, body, sign_headers, body_length)
