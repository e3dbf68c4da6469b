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
#
# This has been modified from the original software.
# Copyright (c) 2017 Valimail Inc
# Contact: Gene Shuman <gene@valimail.com>

import asyncio
import time

from dkimverify.canonicalization import canonicalize
from dkimverify.keys import (
    check_key_usage,
    default_key_resolver,
    KeyResolver,
    )
from dkimverify.message import RawMessage
from dkimverify.policy import PolicyEngine
from dkimverify.results import (
    OK,
    Outcome,
    VerificationReport,
    VerificationResult,
    )
from dkimverify.signature import DEFAULT_SLOP, parse_signatures
from dkimverify.types import Reason, Status
from dkimverify.util import (
    get_default_logger,
    PermanentFailure,
    TemporaryFailure,
    VerificationFailure,
    )
from dkimverify.verifier import check_body_hash, check_signature

__all__ = [
    'Verifier',
    'verify_async',
    ]


class Verifier(object):
    """Verify every DKIM signature on a message.

    @param key_resolver: a L{KeyResolver}; share one between requests to
    share its cache and coalesce lookups
    @param resolver: DNS backend for a new L{KeyResolver} when key_resolver
    is not given.  With neither, the process-wide
    L{default_key_resolver} (aiodns) is used.
    @param policy: a L{PolicyEngine} (default: relaxed alignment, no rules)
    @param minkey: RSA keys shorter than this are flagged WeakKey
    @param timeout: seconds allowed for all key lookups of one message
    @param slop: seconds a t= value may lie in the future
    @param logger: a logger to which debug info will be written
    """

    def __init__(self, key_resolver=None, resolver=None, policy=None,
                 minkey=1024, timeout=5, slop=DEFAULT_SLOP, logger=None,
                 debug_content=False):
        if logger is None:
            logger = get_default_logger()
        self.logger = logger
        if key_resolver is None:
            if resolver is None:
                key_resolver = default_key_resolver()
            else:
                key_resolver = KeyResolver(dns=resolver, logger=logger,
                                           lookup_timeout=timeout)
        self.key_resolver = key_resolver
        if policy is None:
            policy = PolicyEngine(logger=logger)
        self.policy = policy
        self.minkey = minkey
        self.timeout = timeout
        self.slop = slop
        self.debug_content = debug_content

    async def verify(self, message, now=None, timeout=None):
        """Verify all signatures on an RFC822 message.

        @param message: the message bytes (with either \\n or \\r\\n line
        endings), or a L{RawMessage}
        @param now: seconds since the epoch to check t= and x= against
        @param timeout: overrides the lookup deadline for this message
        @return: a L{VerificationReport}
        @raise MalformedMessage: when the header block cannot be found
        """
        if not isinstance(message, RawMessage):
            message = RawMessage.parse(message)
        if now is None:
            now = int(time.time())
        if timeout is None:
            timeout = self.timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        results = []
        forms = {}
        for index, (header, sig) in enumerate(
                parse_signatures(message, now, self.slop)):
            result = VerificationResult(index, header)
            results.append(result)
            if isinstance(sig, PermanentFailure):
                self.logger.error("signature %d: %s" % (index, sig))
                result.fail('parsing', sig)
                continue
            self.logger.debug("sig: %r" % sig.tags)
            result.signature = sig
            result.parsing = OK
            form = canonicalize(message, sig)
            result.canonicalization = Outcome(
                Status.VALID, None, '%s, %d header fields, %d body bytes' % (
                    sig.canonicalization.to_c_value(),
                    len(form.signed_headers), len(form.body)))
            # The body hash is cheap; no key is fetched for a body that
            # does not match.
            try:
                check_body_hash(form, sig, self.logger)
            except PermanentFailure as e:
                self.logger.error("%s: %s" % (sig.domain, e))
                result.fail('crypto', e)
                continue
            forms[index] = form

        if not results:
            result = VerificationResult(0)
            result.parsing = Outcome(
                Status.NONE, Reason.NO_SIGNATURE,
                'message has no DKIM-Signature header field')
            results.append(result)

        await asyncio.gather(*[
            self._check(results[i], form, deadline)
            for i, form in forms.items()])

        from_domain = message.from_domain
        for result in results:
            result.verdict, result.verdict_detail = self.policy.evaluate(
                result, from_domain)
            result.freeze()
        verdict = self.policy.aggregate(results)
        self.logger.debug("verdict for %s: %s" % (from_domain, verdict))
        return VerificationReport(results, verdict, from_domain)

    async def _check(self, result, form, deadline):
        sig = result.signature
        remaining = max(0, deadline - asyncio.get_running_loop().time())
        try:
            key = await self.key_resolver.resolve(
                sig.selector, sig.domain, timeout=remaining)
            check_key_usage(key, sig)
        except VerificationFailure as e:
            self.logger.error("%s._domainkey.%s: %s" % (
                sig.selector, sig.domain, e))
            result.fail('key_resolution', e)
            return
        except Exception as e:
            # A broken resolver fails this signature only.
            self.logger.exception("%s._domainkey.%s: key lookup error" % (
                sig.selector, sig.domain))
            result.fail('key_resolution', TemporaryFailure(
                Reason.DNS_ERROR, "key lookup failed: %r" % (e,)))
            return
        result.key = key
        result.key_resolution = Outcome(
            Status.VALID, None, '%s key, %d bits' % (key.key_type,
                                                     key.keysize))
        try:
            result.advisories = check_signature(
                form, sig, key, self.minkey, self.logger, self.debug_content)
        except PermanentFailure as e:
            self.logger.error("%s: %s" % (sig.domain, e))
            result.fail('crypto', e)
            return
        result.crypto = OK


async def verify_async(message, logger=None, resolver=None, policy=None,
                       minkey=1024, timeout=5, now=None, key_resolver=None):
    """Verify every DKIM signature on an RFC822 formatted message in an
    asyncio context.

    @param message: an RFC822 formatted message (with either \\n or \\r\\n
    line endings)
    @param logger: a logger to which debug info will be written
    @param resolver: DNS backend with a C{lookup_txt(name, timeout)}
    coroutine (default: the shared aiodns L{KeyResolver})
    @param timeout: number of seconds for all DNS lookups (default = 5)
    @param key_resolver: a L{KeyResolver} to share between calls
    @return: a L{VerificationReport}
    @raise MalformedMessage: when the message has no header/body separator
    """
    v = Verifier(key_resolver=key_resolver, resolver=resolver, policy=policy,
                 minkey=minkey, timeout=timeout, logger=logger)
    return await v.verify(message, now=now)
