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

from enum import Enum


class Verdict(Enum):
    PASS = 'pass'
    NEUTRAL = 'neutral'
    TEMP_ERROR = 'temperror'
    FAIL = 'fail'
    POLICY_ERROR = 'policyerror'

    @property
    def rank(self):
        """Lower is better when choosing the aggregate verdict."""
        return VERDICT_PRECEDENCE.index(self)


VERDICT_PRECEDENCE = (
    Verdict.PASS,
    Verdict.NEUTRAL,
    Verdict.TEMP_ERROR,
    Verdict.FAIL,
    Verdict.POLICY_ERROR,
)


class Status(Enum):
    VALID = 'valid'
    PERMFAIL = 'permfail'
    TEMPFAIL = 'tempfail'
    NONE = 'none'


class Directive(Enum):
    REQUIRE_VALID = 'require-valid'
    ALLOW = 'allow'
    NEUTRAL = 'neutral'


class Reason(Enum):
    # message and signature syntax
    NO_SIGNATURE = 'NoSignature'
    MALFORMED_SIGNATURE = 'MalformedSignature'
    MISSING_TAG = 'MissingTag'
    UNSUPPORTED_VERSION = 'UnsupportedVersion'
    UNSUPPORTED_ALGORITHM = 'UnsupportedAlgorithm'
    INVALID_CANONICALIZATION = 'InvalidCanonicalization'
    UNSUPPORTED_QUERY_METHOD = 'UnsupportedQueryMethod'
    FROM_NOT_SIGNED = 'FromNotSigned'
    IDENTITY_MISMATCH = 'IdentityMismatch'
    NOT_YET_VALID = 'NotYetValid'
    EXPIRED = 'Expired'
    # keys
    NO_KEY = 'NoKey'
    KEY_REVOKED = 'KeyRevoked'
    MALFORMED_KEY = 'MalformedKey'
    UNKNOWN_KEY_TYPE = 'UnknownKeyType'
    KEY_ALGORITHM_MISMATCH = 'KeyAlgorithmMismatch'
    HASH_NOT_PERMITTED = 'HashNotPermitted'
    KEY_NOT_AUTHORIZED_FOR_EMAIL = 'KeyNotAuthorizedForEmail'
    TIMEOUT = 'Timeout'
    DNS_ERROR = 'DNSError'
    # cryptography
    BODY_HASH_MISMATCH = 'BodyHashMismatch'
    SIGNATURE_INVALID = 'SignatureInvalid'
    # policy
    WRONG_SIGNER = 'WrongSigner'
    POLICY_ERROR = 'PolicyError'
    # advisories on valid signatures
    WEAK_KEY = 'WeakKey'
    WEAK_HASH = 'WeakHash'
    TESTING_KEY = 'TestingKey'
    PARTIAL_BODY = 'PartialBody'
