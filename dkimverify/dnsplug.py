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

"""TXT record lookup backends.

A backend is any object with a coroutine C{lookup_txt(name, timeout)}
returning a L{TxtAnswer} (or a plain sequence of records) and raising
L{PermanentFailure} or L{TemporaryFailure} from L{dkimverify.util}.
"""

import asyncio
import collections

import aiodns
import aiodns.error
import dns.asyncresolver
import dns.exception
import dns.resolver

from dkimverify.types import Reason
from dkimverify.util import (
    get_default_logger,
    PermanentFailure,
    TemporaryFailure,
    )

__all__ = [
    'AiodnsResolver',
    'DnspythonResolver',
    'get_resolver',
    'StaticResolver',
    'TxtAnswer',
    ]

#: records: list of TXT values as bytes, ttl: seconds or None
TxtAnswer = collections.namedtuple('TxtAnswer', ['records', 'ttl'])


def _bytes(s):
    if isinstance(s, str):
        return s.encode('ascii', 'replace')
    return s


class AiodnsResolver(object):
    """Query TXT records with aiodns (c-ares)."""

    NOT_FOUND = (aiodns.error.ARES_ENOTFOUND, aiodns.error.ARES_ENODATA)

    def __init__(self, nameservers=None, logger=None):
        self.nameservers = nameservers
        self.logger = logger or get_default_logger()

    async def lookup_txt(self, name, timeout=5):
        resolver = aiodns.DNSResolver(
            nameservers=self.nameservers, timeout=timeout, tries=1)
        try:
            result = await resolver.query(name, 'TXT')
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            self.logger.debug("TXT %s: %s" % (name, e))
            if code in self.NOT_FOUND:
                raise PermanentFailure(
                    Reason.NO_KEY, "no key record at %s" % name)
            if code == aiodns.error.ARES_ETIMEOUT:
                raise TemporaryFailure(
                    Reason.TIMEOUT, "DNS timeout looking up %s" % name)
            raise TemporaryFailure(
                Reason.DNS_ERROR, "DNS error looking up %s: %s" % (name, e))
        records = [_bytes(r.text) for r in result]
        ttls = [r.ttl for r in result if getattr(r, 'ttl', None)]
        return TxtAnswer(records, min(ttls) if ttls else None)


class DnspythonResolver(object):
    """Query TXT records with the dnspython asyncio resolver."""

    def __init__(self, nameservers=None, logger=None):
        self.nameservers = nameservers
        self.logger = logger or get_default_logger()
        self._resolver = None

    @property
    def resolver(self):
        # Reading resolv.conf is deferred to the first query.
        if self._resolver is None:
            self._resolver = dns.asyncresolver.Resolver()
            if self.nameservers:
                self._resolver.nameservers = list(self.nameservers)
        return self._resolver

    async def lookup_txt(self, name, timeout=5):
        try:
            answer = await self.resolver.resolve(
                name, 'TXT', lifetime=timeout)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer) as e:
            self.logger.debug("TXT %s: %s" % (name, e))
            raise PermanentFailure(
                Reason.NO_KEY, "no key record at %s" % name)
        except dns.exception.Timeout:
            raise TemporaryFailure(
                Reason.TIMEOUT, "DNS timeout looking up %s" % name)
        except dns.exception.DNSException as e:
            raise TemporaryFailure(
                Reason.DNS_ERROR, "DNS error looking up %s: %s" % (name, e))
        records = [b''.join(r.strings) for r in answer]
        return TxtAnswer(records, answer.rrset.ttl)


class StaticResolver(object):
    """Serve TXT records from a mapping of name to record(s).

    Names are compared without the trailing dot and case-insensitively.
    Each lookup is counted in C{queries}.
    """

    def __init__(self, records=None, ttl=None, delay=0):
        self.records = {}
        for name, value in (records or {}).items():
            self.add(name, value)
        self.ttl = ttl
        self.delay = delay
        self.queries = []

    @staticmethod
    def _key(name):
        if isinstance(name, bytes):
            name = name.decode('ascii')
        return name.rstrip('.').lower()

    def add(self, name, value):
        if isinstance(value, (bytes, str)):
            value = [value]
        self.records[self._key(name)] = [_bytes(x) for x in value]

    async def lookup_txt(self, name, timeout=5):
        self.queries.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            return TxtAnswer(list(self.records[self._key(name)]), self.ttl)
        except KeyError:
            raise PermanentFailure(
                Reason.NO_KEY, "no key record at %s" % name)


BACKENDS = {
    'aiodns': AiodnsResolver,
    'dnspython': DnspythonResolver,
    }


def get_resolver(backend='aiodns', **kwargs):
    """Create a resolver backend by name ('aiodns' or 'dnspython')."""
    try:
        factory = BACKENDS[backend]
    except KeyError:
        raise ValueError("unknown DNS backend: %s" % backend)
    return factory(**kwargs)
