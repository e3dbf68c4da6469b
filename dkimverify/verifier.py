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

from dkimverify import crypto
from dkimverify.types import Reason
from dkimverify.util import (
    get_default_logger,
    PermanentFailure,
    )

__all__ = [
    'check_body_hash',
    'check_signature',
    'HashThrough',
    ]


class HashThrough(object):
    """A hash object that remembers what it was fed, for debugging."""

    def __init__(self, hasher, debug=False):
        self.data = []
        self.hasher = hasher
        self.name = hasher.name
        self.debug = debug

    def update(self, data):
        if self.debug:
            self.data.append(data)
        return self.hasher.update(data)

    def digest(self):
        return self.hasher.digest()

    def hexdigest(self):
        return self.hasher.hexdigest()

    def hashed(self):
        return b''.join(self.data)


def body_hash(form, signature):
    h = signature.hasher()
    h.update(form.body)
    return h.digest()


def check_body_hash(form, signature, logger=None):
    """Compare the canonical body digest with bh=.

    @param form: a L{dkimverify.canonicalization.CanonicalForm}
    @param signature: a L{dkimverify.signature.Signature}
    @raise PermanentFailure: BodyHashMismatch
    """
    logger = logger or get_default_logger()
    bodyhash = body_hash(form, signature)
    logger.debug("bh: %s" % base64.b64encode(bodyhash).decode('ascii'))
    if bodyhash != signature.body_hash:
        raise PermanentFailure(
            Reason.BODY_HASH_MISMATCH,
            "body hash mismatch (got %s, expected %s)" % (
                base64.b64encode(bodyhash).decode('ascii'),
                base64.b64encode(signature.body_hash).decode('ascii')))


def check_signature(form, signature, key, minkey=1024, logger=None,
                    debug_content=False):
    """Verify b= over the canonical header block.

    @param form: a L{dkimverify.canonicalization.CanonicalForm}
    @param signature: a L{dkimverify.signature.Signature}
    @param key: the L{dkimverify.keys.KeyRecord} for the signature
    @param minkey: RSA keys shorter than this many bits are flagged
    @return: tuple of advisory L{Reason}s for a valid signature
    @raise PermanentFailure: SignatureInvalid, or MalformedKey when the
    digest does not fit the key
    """
    logger = logger or get_default_logger()
    h = HashThrough(signature.hasher(), debug_content)
    h.update(form.headers)
    if debug_content:
        logger.debug("signed for %s: %r" % (signature.domain, h.hashed()))
    try:
        res = crypto.verify_signature(
            key.key_type, h, signature.signature, key.key)
    except crypto.DigestTooLargeError:
        raise PermanentFailure(
            Reason.MALFORMED_KEY, "digest too large for modulus")
    logger.debug("%s valid: %s" % (signature.domain, res))
    if not res:
        raise PermanentFailure(
            Reason.SIGNATURE_INVALID,
            "signature did not verify with key %s._domainkey.%s" % (
                signature.selector, signature.domain))

    advisories = []
    if key.key_type == 'rsa' and key.keysize < minkey:
        advisories.append(Reason.WEAK_KEY)
    if signature.algorithm == 'rsa-sha1':
        advisories.append(Reason.WEAK_HASH)
    if key.testing:
        advisories.append(Reason.TESTING_KEY)
    if signature.length is not None and signature.length < form.body_length:
        advisories.append(Reason.PARTIAL_BODY)
    return tuple(advisories)
