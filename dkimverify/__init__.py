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
# Copyright (c) 2016 Google, Inc.
# Contact: Brandon Long <blong@google.com>
#
# This has been modified from the original software.
# Copyright (c) 2016 Scott Kitterman <scott@kitterman.com>
#

import asyncio

from dkimverify.canonicalization import (
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    Relaxed,
    Simple,
    )
from dkimverify.coordinator import Verifier, verify_async
from dkimverify.dnsplug import (
    AiodnsResolver,
    DnspythonResolver,
    get_resolver,
    StaticResolver,
    TxtAnswer,
    )
from dkimverify.keys import (
    check_key_usage,
    default_key_resolver,
    KeyCache,
    KeyRecord,
    KeyResolver,
    parse_key_record,
    )
from dkimverify.message import RawMessage
from dkimverify.policy import (
    aggregate_verdict,
    is_aligned,
    load_rules,
    load_rules_file,
    organizational_domain,
    PolicyEngine,
    SignRule,
    )
from dkimverify.results import Outcome, VerificationReport, VerificationResult
from dkimverify.sign import fold, sign
from dkimverify.signature import parse_signature, parse_signatures, Signature
from dkimverify.types import Directive, Reason, Status, Verdict
from dkimverify.util import (
    DKIMException,
    get_default_logger,
    KeyFormatError,
    MalformedMessage,
    MessageFormatError,
    ParameterError,
    PermanentFailure,
    PolicyError,
    TemporaryFailure,
    VerificationFailure,
    )

__all__ = [
    "aggregate_verdict",
    "AiodnsResolver",
    "CanonicalizationPolicy",
    "check_key_usage",
    "default_key_resolver",
    "Directive",
    "DKIMException",
    "DnspythonResolver",
    "fold",
    "get_default_logger",
    "get_resolver",
    "InvalidCanonicalizationPolicyError",
    "is_aligned",
    "KeyCache",
    "KeyFormatError",
    "KeyRecord",
    "KeyResolver",
    "load_rules",
    "load_rules_file",
    "MalformedMessage",
    "MessageFormatError",
    "organizational_domain",
    "Outcome",
    "ParameterError",
    "parse_key_record",
    "parse_signature",
    "parse_signatures",
    "PermanentFailure",
    "PolicyEngine",
    "PolicyError",
    "RawMessage",
    "Reason",
    "Relaxed",
    "sign",
    "Signature",
    "SignRule",
    "Simple",
    "StaticResolver",
    "Status",
    "TemporaryFailure",
    "TxtAnswer",
    "Verdict",
    "VerificationFailure",
    "VerificationReport",
    "VerificationResult",
    "Verifier",
    "verify",
    "verify_async",
]


def verify(message, logger=None, resolver=None, policy=None, minkey=1024,
           timeout=5, now=None, key_resolver=None):
    """Verify every DKIM signature on an RFC822 formatted message.

    Runs L{verify_async} in a new event loop, so it must not be called
    from a coroutine.

    @param message: an RFC822 formatted message (with either \\n or \\r\\n
    line endings)
    @param logger: a logger to which debug info will be written
    @param resolver: DNS backend (default: the shared aiodns L{KeyResolver})
    @param policy: a L{PolicyEngine}
    @param minkey: RSA keys shorter than this are flagged WeakKey
    @param timeout: number of seconds for all DNS lookups (default = 5)
    @param key_resolver: a L{KeyResolver} to share between calls, so
    that its cache outlives each call
    @return: a L{VerificationReport}
    @raise MalformedMessage: when the message has no header/body separator
    """
    return asyncio.run(verify_async(
        message, logger=logger, resolver=resolver, policy=policy,
        minkey=minkey, timeout=timeout, now=now, key_resolver=key_resolver))
