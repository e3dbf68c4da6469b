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
from email.utils import getaddresses

from dkimverify.util import MalformedMessage

__all__ = [
    'RawMessage',
    'rfc822_parse',
    ]


def rfc822_parse(message):
    """Parse a message in RFC822 format.

    @param message: The message in RFC822 format. Either CRLF or LF is an
    accepted line separator.
    @return: Returns a tuple of (headers, body) where headers is a list of
    (name, value) pairs.  The value keeps everything after the colon,
    including folding and the terminating CRLF.  The body is a
    CRLF-separated string.
    @raise MalformedMessage: when the header block is not well formed or
    is not terminated by an empty line.
    """
    headers = []
    lines = re.split(b"\r?\n", message)
    i = 0
    while i < len(lines):
        if len(lines[i]) == 0:
            if i == len(lines) - 1:
                # Only the terminator of the last header line.
                raise MalformedMessage(
                    "No empty line between header and body")
            # End of headers, return what we have plus the body, excluding
            # the blank line.
            i += 1
            break
        if lines[i][0] in (0x09, 0x20):
            if not headers:
                raise MalformedMessage(
                    "Continuation line before first header field: %r"
                    % lines[i])
            headers[-1][1] += lines[i] + b"\r\n"
        else:
            m = re.match(br"([\x21-\x39\x3b-\x7e]+)[\x09\x20]*:", lines[i])
            if m is not None:
                headers.append(
                    [lines[i][:m.end(0) - 1], lines[i][m.end(0):] + b"\r\n"])
            elif i == 0 and lines[i].startswith(b"From "):
                pass
            else:
                raise MalformedMessage(
                    "Unexpected characters in RFC822 header: %r" % lines[i])
        i += 1
    else:
        raise MalformedMessage("No empty line between header and body")
    return ([(x, y) for x, y in headers], b"\r\n".join(lines[i:]))


class RawMessage(object):
    """A message split into its header fields and body.

    Header fields are (name, value) byte pairs in the order received; the
    body has CRLF line endings.  Instances are not modified after parsing.
    """

    __slots__ = ('headers', 'body')

    def __init__(self, headers, body):
        object.__setattr__(self, 'headers', tuple(headers))
        object.__setattr__(self, 'body', body)

    def __setattr__(self, name, value):
        raise AttributeError("RawMessage is immutable")

    @classmethod
    def parse(cls, message):
        if isinstance(message, str):
            message = message.encode('utf-8', 'surrogateescape')
        headers, body = rfc822_parse(message)
        return cls(headers, body)

    def get_all(self, name):
        """Return the values of every field called name, top to bottom."""
        name = name.lower()
        return [y for x, y in self.headers if x.lower() == name]

    @property
    def from_domain(self):
        """Lower-cased domain of the first From: address, or None."""
        values = self.get_all(b'from')
        if not values:
            return None
        value = re.sub(br"\r\n", b"", values[0]).decode('utf-8', 'replace')
        for name, addr in getaddresses([value]):
            if '@' in addr:
                return addr.rsplit('@', 1)[1].strip().rstrip('.').lower()
        return None

    def __repr__(self):
        return '<RawMessage %d headers, %d body bytes>' % (
            len(self.headers), len(self.body))
