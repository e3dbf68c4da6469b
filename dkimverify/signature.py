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

import base64
import binascii
import re
import time

from dkimverify.canonicalization import (
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    )
from dkimverify.crypto import HASH_ALGORITHMS
from dkimverify.types import Reason
from dkimverify.util import (
    InvalidTagValueList,
    parse_tag_value,
    PermanentFailure,
    )

__all__ = [
    'parse_signature',
    'parse_signatures',
    'Signature',
    'SIGNATURE_HEADER',
    ]

SIGNATURE_HEADER = b'dkim-signature'

MANDATORY_TAGS = (b'v', b'a', b'b', b'bh', b'd', b'h', b's')

#: Leeway for t= values from mailers with inaccurate clocks.
DEFAULT_SLOP = 36000

RE_BASE64 = re.compile(br"[\s0-9A-Za-z+/]+=*\s*$")
RE_DIGITS = re.compile(br"\d{1,76}$")


class Signature(object):
    """The validated content of one DKIM-Signature header field.

    Textual tags are decoded to str, b= and bh= to their binary value.
    All tags as received, known or not, are kept in C{tags}.
    """

    def __init__(self, header, tags, version, algorithm, signature,
                 body_hash, canonicalization, domain, signed_headers,
                 selector, identity=None, length=None, timestamp=None,
                 expiration=None, query_methods=('dns/txt',),
                 copied_headers=None):
        #: (name, value) as found in the message
        self.header = header
        self.tags = tags
        self.version = version
        self.algorithm = algorithm
        self.signature = signature
        self.body_hash = body_hash
        self.canonicalization = canonicalization
        self.domain = domain
        self.signed_headers = signed_headers
        self.selector = selector
        self.identity = identity
        self.length = length
        self.timestamp = timestamp
        self.expiration = expiration
        self.query_methods = query_methods
        self.copied_headers = copied_headers

    @property
    def sdid(self):
        return self.domain

    @property
    def auid(self):
        """The i= value, or its default of an empty local part at d=."""
        if self.identity is None:
            return '@' + self.domain
        return self.identity

    @property
    def auid_domain(self):
        return self.auid.rsplit('@', 1)[-1].lower()

    @property
    def hasher(self):
        return HASH_ALGORITHMS[self.algorithm]

    @property
    def key_type(self):
        return self.algorithm.split('-', 1)[0]

    def __repr__(self):
        return '<Signature d=%s s=%s a=%s>' % (
            self.domain, self.selector, self.algorithm)


def _text(tags, name):
    try:
        return tags[name].decode('ascii')
    except UnicodeDecodeError:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE,
            "%s= value is not ASCII (%r)" % (name.decode(), tags[name]))


def _base64(tags, name):
    value = tags[name]
    if RE_BASE64.match(value) is None:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE,
            "%s= value is not valid base64 (%r)" % (name.decode(), value))
    try:
        return base64.b64decode(re.sub(br"\s+", b"", value), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE,
            "%s= value is not valid base64 (%s)" % (name.decode(), e))


def _integer(tags, name):
    value = re.sub(br"\s+", b"", tags[name])
    if RE_DIGITS.match(value) is None:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE,
            "%s= value is not a decimal integer (%r)"
            % (name.decode(), tags[name]))
    return int(value)


def parse_signature(header, now=None, slop=DEFAULT_SLOP):
    """Parse and validate one DKIM-Signature header field.

    Basic checks for presence and correct formatting of mandatory fields,
    then the time window.  An expired signature is rejected here so that
    no key lookup is made for it.

    @param header: (name, value) pair from the message
    @param now: current time in seconds since the epoch (default: now)
    @param slop: seconds a t= value may lie in the future
    @return: a L{Signature}
    @raise PermanentFailure: when the field cannot be used for verification
    """
    try:
        tags = parse_tag_value(header[1])
    except InvalidTagValueList as e:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE,
            "invalid tag list: %r" % (e.args[0] if e.args else e))

    for field in MANDATORY_TAGS:
        if field not in tags:
            raise PermanentFailure(
                Reason.MISSING_TAG,
                "DKIM signature missing %s=" % field.decode())

    version = _text(tags, b'v')
    if version != "1":
        raise PermanentFailure(
            Reason.UNSUPPORTED_VERSION, "v= value is not 1 (%s)" % version)

    algorithm = _text(tags, b'a').lower()
    if algorithm not in HASH_ALGORITHMS:
        raise PermanentFailure(
            Reason.UNSUPPORTED_ALGORITHM,
            "unknown signature algorithm: %s" % algorithm)

    signature = _base64(tags, b'b')
    body_hash = _base64(tags, b'bh')

    try:
        canonicalization = CanonicalizationPolicy.from_c_value(
            _text(tags, b'c') if b'c' in tags else None)
    except InvalidCanonicalizationPolicyError as e:
        raise PermanentFailure(
            Reason.INVALID_CANONICALIZATION,
            "invalid c= value: %s" % e.args[0])

    domain = _text(tags, b'd')
    if not domain or domain.startswith('.') or '..' in domain:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE, "d= value is not a domain (%s)"
            % domain)

    signed_headers = [
        x.lower() for x in re.split(r"\s*:\s*", _text(tags, b'h').strip())
        if x]
    if 'from' not in signed_headers:
        raise PermanentFailure(
            Reason.FROM_NOT_SIGNED, "From field not signed")

    selector = _text(tags, b's')
    if not selector:
        raise PermanentFailure(
            Reason.MALFORMED_SIGNATURE, "s= value is empty")

    identity = None
    if b'i' in tags:
        identity = _text(tags, b'i')
        idomain = identity.rsplit('@', 1)[-1].lower()
        sdid = domain.lower()
        if '@' not in identity or not (
                idomain == sdid or idomain.endswith('.' + sdid)):
            raise PermanentFailure(
                Reason.IDENTITY_MISMATCH,
                "i= domain is not a subdomain of d= (i=%s d=%s)"
                % (identity, domain))

    length = None
    if b'l' in tags:
        length = _integer(tags, b'l')

    query_methods = ('dns/txt',)
    if b'q' in tags:
        query_methods = tuple(
            x.strip().lower() for x in _text(tags, b'q').split(':'))
        if 'dns/txt' not in query_methods:
            raise PermanentFailure(
                Reason.UNSUPPORTED_QUERY_METHOD,
                "q= value is not dns/txt (%s)" % ':'.join(query_methods))

    if now is None:
        now = int(time.time())
    timestamp = None
    if b't' in tags:
        timestamp = _integer(tags, b't')
        if timestamp > now + slop:
            raise PermanentFailure(
                Reason.NOT_YET_VALID,
                "t= value is in the future (%d)" % timestamp)
    expiration = None
    if b'x' in tags:
        expiration = _integer(tags, b'x')
        if timestamp is not None and expiration < timestamp:
            raise PermanentFailure(
                Reason.MALFORMED_SIGNATURE,
                "x= value is less than t= value (x=%d t=%d)"
                % (expiration, timestamp))
        if expiration < now:
            raise PermanentFailure(
                Reason.EXPIRED, "x= value is past (%d)" % expiration)

    copied_headers = None
    if b'z' in tags:
        copied_headers = [
            x.strip() for x in re.split(br"\s*\|\s*", tags[b'z']) if x]

    return Signature(
        header, tags, version, algorithm, signature, body_hash,
        canonicalization, domain, signed_headers, selector,
        identity=identity, length=length, timestamp=timestamp,
        expiration=expiration, query_methods=query_methods,
        copied_headers=copied_headers)


def parse_signatures(message, now=None, slop=DEFAULT_SLOP):
    """Parse every DKIM-Signature field of a message.

    Fields are returned in header order, which is newest first since
    signers prepend their field.  A field that fails to parse is returned
    as its L{PermanentFailure} in place of a L{Signature}.

    @param message: a L{dkimverify.message.RawMessage}
    @return: list of (header, Signature or PermanentFailure) pairs
    """
    results = []
    for header in message.headers:
        if header[0].lower().rstrip() != SIGNATURE_HEADER:
            continue
        try:
            results.append((header, parse_signature(header, now, slop)))
        except PermanentFailure as e:
            results.append((header, e))
    return results
