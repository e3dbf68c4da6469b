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
import time

from dkimverify import canonicalization
from dkimverify.canonicalization import (
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    RE_BTAG,
    )
from dkimverify.crypto import (
    DigestTooLargeError,
    ed25519_sign,
    HASH_ALGORITHMS,
    parse_pem_private_key,
    RSASSA_PKCS1_v1_5_sign,
    UnparsableKeyError,
    )
from dkimverify.message import RawMessage
from dkimverify.signature import Signature
from dkimverify.util import (
    get_default_logger,
    KeyFormatError,
    ParameterError,
    )

__all__ = [
    'default_sign_headers',
    'fold',
    'sign',
    ]

#: Header fields to protect from additions by default.
FROZEN = (b'from', b'date', b'subject')

#: The rfc4871 recommended header fields to sign
SHOULD = (
    b'sender', b'reply-to', b'subject', b'date', b'message-id', b'to', b'cc',
    b'mime-version', b'content-type', b'content-transfer-encoding',
    b'content-id', b'content-description', b'resent-date', b'resent-from',
    b'resent-sender', b'resent-to', b'resent-cc', b'resent-message-id',
    b'in-reply-to', b'references', b'list-id', b'list-help',
    b'list-unsubscribe', b'list-subscribe', b'list-post', b'list-owner',
    b'list-archive', b'from',
)

#: The rfc4871 recommended header fields not to sign.
SHOULD_NOT = (
    b'return-path', b'received', b'comments', b'keywords', b'bcc',
    b'resent-bcc', b'dkim-signature'
)


def fold(header):
    """Fold a header line into multiple crlf-separated lines at column 72.

    >>> fold(b'foo')
    b'foo'
    >>> fold(b'foo  '+b'foo'*24).splitlines()[0]
    b'foo  '
    >>> fold(b'foo'*25).splitlines()[-1]
    b' foo'
    >>> len(fold(b'foo'*25).splitlines()[0])
    72
    """
    i = header.rfind(b"\r\n ")
    if i == -1:
        pre = b""
    else:
        i += 3
        pre = header[:i]
        header = header[i:]
    while len(header) > 72:
        i = header[:72].rfind(b" ")
        if i == -1:
            j = 72
        else:
            j = i + 1
        pre += header[:j] + b"\r\n "
        header = header[j:]
    return pre + header


def default_sign_headers(headers):
    """Return the default list of headers to sign: the recommended ones
    present in the message, with the frozen ones signed an extra time to
    prevent additions."""
    include_headers = [x.lower().rstrip() for x, y in headers
                       if x.lower().rstrip() in SHOULD]
    return include_headers + [x for x in FROZEN if x in include_headers]


def _bytes(s):
    if isinstance(s, str):
        return s.encode('ascii')
    return s


def sign(message, selector, domain, privkey, identity=None,
         canonicalize=(b'relaxed', b'simple'),
         signature_algorithm=b'rsa-sha256', include_headers=None,
         length=False, timestamp=None, expiration=None, logger=None):
    """Sign an RFC822 message and return the DKIM-Signature header line.

    @param message: an RFC822 formatted message (with either \\n or \\r\\n
    line endings)
    @param selector: the DKIM selector value for the signature
    @param domain: the DKIM domain value for the signature
    @param privkey: for rsa-* a PKCS#1 private key in PEM form, for
    ed25519-sha256 the base64 encoded 32 byte seed
    @param identity: the DKIM identity value for the signature (default
    none, meaning "@"+domain)
    @param canonicalize: the canonicalization algorithms to use (default
    (relaxed, simple))
    @param signature_algorithm: rsa-sha256, rsa-sha1 or ed25519-sha256
    @param include_headers: a list of strings indicating which headers are
    to be signed (default the recommended headers present)
    @param length: true if the l= tag should be included to indicate body
    length (default False)
    @param timestamp: t= value (default now)
    @param expiration: x= value (default none)
    @return: DKIM-Signature header field terminated by \\r\\n
    @raise DKIMException: when the message, include_headers, or key are
    badly formed.
    """
    logger = logger or get_default_logger()
    if not isinstance(message, RawMessage):
        message = RawMessage.parse(message)
    selector, domain, identity, algorithm = [
        _bytes(x) for x in (selector, domain, identity, signature_algorithm)]
    if algorithm.decode('ascii') not in HASH_ALGORITHMS:
        raise ParameterError(
            "Unsupported signature algorithm: %s" % algorithm)
    if identity is not None and not identity.endswith(domain):
        raise ParameterError("identity must end with domain")

    if algorithm.startswith(b'ed25519'):
        try:
            pk = base64.b64decode(privkey, validate=True)
        except (binascii.Error, ValueError) as e:
            raise KeyFormatError(str(e))
        if len(pk) != 32:
            raise KeyFormatError("Ed25519 seed must be 32 bytes")
    else:
        try:
            pk = parse_pem_private_key(privkey)
        except UnparsableKeyError as e:
            raise KeyFormatError(str(e))

    try:
        canon_policy = CanonicalizationPolicy.from_c_value(
            b'/'.join(_bytes(x) for x in canonicalize))
    except InvalidCanonicalizationPolicyError as e:
        raise ParameterError("invalid canonicalization: %s" % e.args[0])

    if include_headers is None:
        include_headers = default_sign_headers(message.headers)
    include_headers = [_bytes(x).lower() for x in include_headers]

    # rfc4871 says FROM is required
    if b'from' not in include_headers:
        raise ParameterError("The From header field MUST be signed")

    # raise exception for any SHOULD_NOT headers
    for x in include_headers:
        if x in SHOULD_NOT:
            raise ParameterError(
                "The %s header field SHOULD NOT be signed" % x.decode())

    hasher = HASH_ALGORITHMS[algorithm.decode('ascii')]
    body = canon_policy.canonicalize_body(message.body)
    bodyhash = base64.b64encode(hasher(body).digest())

    if timestamp is None:
        timestamp = int(time.time())
    sigfields = [x for x in [
        (b'v', b"1"),
        (b'a', algorithm),
        (b'c', canon_policy.to_c_value().encode('ascii')),
        (b'd', domain),
        identity is not None and (b'i', identity),
        length and (b'l', str(len(body)).encode('ascii')),
        (b'q', b"dns/txt"),
        (b's', selector),
        (b't', str(int(timestamp)).encode('ascii')),
        expiration is not None and (
            b'x', str(int(expiration)).encode('ascii')),
        (b'h', b" : ".join(include_headers)),
        (b'bh', bodyhash),
        # Force b= to fold onto it's own line so that refolding after
        # adding sig doesn't change whitespace for previous tags.
        (b'b', b'0' * 60),
    ] if x]

    sig_value = fold(b"; ".join(b"=".join(x) for x in sigfields))
    sig_value = RE_BTAG.sub(b'\\1', sig_value)
    dkim_header = (b'DKIM-Signature', b' ' + sig_value)
    unsigned = Signature(
        dkim_header, dict(sigfields), '1', algorithm.decode('ascii'), b'',
        base64.b64decode(bodyhash), canon_policy, domain.decode('ascii'),
        [x.decode('ascii') for x in include_headers],
        selector.decode('ascii'))
    form = canonicalization.canonicalize(message, unsigned, extra_from=False)
    logger.debug("sign headers: %r" % form.signed_headers)

    h = hasher()
    h.update(form.headers)
    if algorithm.startswith(b'ed25519'):
        sig2 = ed25519_sign(h, pk)
    else:
        try:
            sig2 = RSASSA_PKCS1_v1_5_sign(h, pk)
        except DigestTooLargeError:
            raise ParameterError("digest too large for modulus")
    # Folding b= is explicity allowed, but yahoo and live.com are broken
    sig_value = fold(sig_value + base64.b64encode(bytes(sig2)))
    return b'DKIM-Signature: ' + sig_value + b"\r\n"
