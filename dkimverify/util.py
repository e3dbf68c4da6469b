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

import logging

__all__ = [
    'DKIMException',
    'DuplicateTag',
    'get_default_logger',
    'InvalidTagSpec',
    'InvalidTagValueList',
    'KeyFormatError',
    'MalformedMessage',
    'MessageFormatError',
    'ParameterError',
    'parse_tag_value',
    'PermanentFailure',
    'PolicyError',
    'TemporaryFailure',
    'VerificationFailure',
    ]


class InvalidTagValueList(Exception):
    pass


class DuplicateTag(InvalidTagValueList):
    pass


class InvalidTagSpec(InvalidTagValueList):
    pass


class DKIMException(Exception):
    """Base class for DKIM errors."""
    pass


class MalformedMessage(DKIMException):
    """RFC822 message format error.  Aborts verification of the message."""
    pass


MessageFormatError = MalformedMessage


class KeyFormatError(DKIMException):
    """Key format error while parsing an RSA or Ed25519 key."""
    pass


class VerificationFailure(DKIMException):
    """A failure confined to one signature.

    @param reason: stable L{dkimverify.types.Reason} code
    @param detail: human readable explanation
    """

    def __init__(self, reason, detail=None):
        if detail is None:
            detail = reason.value
        DKIMException.__init__(self, detail)
        self.reason = reason
        self.detail = detail

    def __repr__(self):
        return '%s(%s, %r)' % (
            self.__class__.__name__, self.reason.value, self.detail)


class PermanentFailure(VerificationFailure):
    """The signature can never verify as it stands."""
    pass


class TemporaryFailure(VerificationFailure):
    """An external dependency failed; a later attempt may succeed."""
    pass


class PolicyError(DKIMException):
    """A signer rule is malformed or contradictory."""
    pass


class ParameterError(DKIMException):
    """Input parameter error."""
    pass


def get_default_logger():
    """Get the default dkimverify logger."""
    logger = logging.getLogger('dkimverify')
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def parse_tag_value(tag_list):
    """Parse a DKIM Tag=Value list.

    Interprets the syntax specified by RFC6376 section 3.2.
    Assumes that folding whitespace is already unfolded.

    @param tag_list: A bytes string containing a DKIM Tag=Value list.
    """
    tags = {}
    tag_specs = tag_list.strip().split(b';')
    # Trailing semicolons are valid.
    if not tag_specs[-1].strip():
        tag_specs.pop()
    for tag_spec in tag_specs:
        try:
            key, value = [x.strip() for x in tag_spec.split(b'=', 1)]
        except ValueError:
            raise InvalidTagSpec(tag_spec)
        if not key:
            raise InvalidTagSpec(tag_spec)
        if key in tags:
            raise DuplicateTag(key)
        tags[key] = value
    return tags
