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

import asyncio
import base64
import binascii
import concurrent.futures
import re
import threading
import time

from dkimverify.crypto import (
    bitsize,
    parse_ed25519_public_key,
    parse_public_key,
    UnparsableKeyError,
    )
from dkimverify.types import Reason
from dkimverify.util import (
    DKIMException,
    get_default_logger,
    InvalidTagValueList,
    parse_tag_value,
    PermanentFailure,
    TemporaryFailure,
    )

__all__ = [
    'check_key_usage',
    'default_key_resolver',
    'KeyCache',
    'KeyRecord',
    'KeyResolver',
    'parse_key_record',
    ]

KEY_TYPES = ('rsa', 'ed25519')


class KeyRecord(object):
    """A public key published at selector._domainkey.domain."""

    def __init__(self, key_type, key, raw, keysize, service_types=('*',),
                 flags=(), hash_algorithms=None, notes=None):
        self.key_type = key_type
        #: parsed key: an RSA dict or a nacl VerifyKey
        self.key = key
        self.raw = raw
        self.keysize = keysize
        self.service_types = service_types
        self.flags = flags
        #: acceptable hash names from h=, None when unrestricted
        self.hash_algorithms = hash_algorithms
        self.notes = notes

    @property
    def testing(self):
        return 'y' in self.flags

    @property
    def strict(self):
        """t=s: the AUID domain must equal the SDID exactly."""
        return 's' in self.flags

    @property
    def email_allowed(self):
        return '*' in self.service_types or 'email' in self.service_types

    def __repr__(self):
        return '<KeyRecord k=%s %d bits>' % (self.key_type, self.keysize)


def _colon_list(value):
    return tuple(
        x.strip().lower() for x in value.decode('ascii', 'replace').split(':')
        if x.strip())


def parse_key_record(txt):
    """Parse a DKIM key record (RFC 6376 section 3.6.1).

    Unknown tags are ignored.

    @param txt: the TXT record value
    @return: a L{KeyRecord}
    @raise PermanentFailure: for a record that cannot be used
    """
    if isinstance(txt, str):
        txt = txt.encode('ascii', 'replace')
    try:
        pub = parse_tag_value(txt)
    except InvalidTagValueList:
        raise PermanentFailure(
            Reason.MALFORMED_KEY, "invalid key record: %r" % txt)
    if b'v' in pub and pub[b'v'] != b'DKIM1':
        raise PermanentFailure(
            Reason.MALFORMED_KEY, "v= value is not DKIM1 (%r)" % pub[b'v'])
    key_type = pub.get(b'k', b'rsa').decode('ascii', 'replace').lower()
    if key_type not in KEY_TYPES:
        raise PermanentFailure(
            Reason.UNKNOWN_KEY_TYPE, "unknown key type: %s" % key_type)
    if b'p' not in pub:
        raise PermanentFailure(
            Reason.MALFORMED_KEY, "incomplete public key: %r" % txt)
    p = re.sub(br"\s+", b"", pub[b'p'])
    if not p:
        raise PermanentFailure(Reason.KEY_REVOKED, "public key revoked")
    try:
        raw = base64.b64decode(p, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PermanentFailure(
            Reason.MALFORMED_KEY, "p= value is not valid base64 (%s)" % e)
    try:
        if key_type == 'rsa':
            key = parse_public_key(raw)
            keysize = bitsize(key['modulus'])
        else:
            key = parse_ed25519_public_key(raw)
            keysize = len(raw) * 8
    except UnparsableKeyError as e:
        raise PermanentFailure(
            Reason.MALFORMED_KEY, "could not parse public key (%s): %s"
            % (p.decode('ascii', 'replace'), e))
    hash_algorithms = None
    if b'h' in pub:
        hash_algorithms = _colon_list(pub[b'h'])
    notes = None
    if b'n' in pub:
        notes = pub[b'n'].decode('utf-8', 'replace')
    return KeyRecord(
        key_type, key, raw, keysize,
        service_types=_colon_list(pub.get(b's', b'*')),
        flags=_colon_list(pub.get(b't', b'')),
        hash_algorithms=hash_algorithms, notes=notes)


def check_key_usage(key, signature):
    """Check that a key may verify a signature.

    @param key: a L{KeyRecord}
    @param signature: a L{dkimverify.signature.Signature}
    @raise PermanentFailure: when the key record forbids this use
    """
    if key.key_type != signature.key_type:
        raise PermanentFailure(
            Reason.KEY_ALGORITHM_MISMATCH,
            "key type %s cannot verify %s" % (
                key.key_type, signature.algorithm))
    hash_name = signature.algorithm.split('-', 1)[1]
    if key.hash_algorithms is not None and \
            hash_name not in key.hash_algorithms:
        raise PermanentFailure(
            Reason.HASH_NOT_PERMITTED,
            "key does not permit %s (h=%s)" % (
                hash_name, ':'.join(key.hash_algorithms)))
    if not key.email_allowed:
        raise PermanentFailure(
            Reason.KEY_NOT_AUTHORIZED_FOR_EMAIL,
            "key service type is %s" % ':'.join(key.service_types))
    if key.strict and signature.auid_domain != signature.domain.lower():
        raise PermanentFailure(
            Reason.IDENTITY_MISMATCH,
            "key requires i= domain to equal d= (i=%s d=%s)" % (
                signature.auid, signature.domain))


class CacheEntry(object):

    __slots__ = ('record', 'fetched', 'ttl')

    def __init__(self, record, fetched, ttl):
        self.record = record
        self.fetched = fetched
        self.ttl = ttl

    def expired(self, now):
        return now >= self.fetched + self.ttl


class KeyCache(object):
    """Key records keyed by (domain, selector) with TTL expiry.

    Expired entries are dropped on the next lookup.  Safe to share between
    threads.

    @param default_ttl: seconds to keep a record whose lookup gave no TTL
    @param max_ttl: upper bound on any TTL
    @param clock: monotonic time source
    """

    def __init__(self, default_ttl=3600, max_ttl=86400, clock=time.monotonic):
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl
        self.clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(domain, selector):
        return (domain.lower().rstrip('.'), selector.lower())

    def get(self, domain, selector):
        key = self._key(domain, selector)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self.clock()):
                del self._entries[key]
                return None
            return entry.record

    def put(self, domain, selector, record, ttl=None):
        if ttl is None:
            ttl = self.default_ttl
        ttl = min(ttl, self.max_ttl)
        if ttl <= 0:
            return
        with self._lock:
            self._entries[self._key(domain, selector)] = CacheEntry(
                record, self.clock(), ttl)

    def invalidate(self, domain, selector):
        with self._lock:
            self._entries.pop(self._key(domain, selector), None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, item):
        return self.get(*item) is not None


class KeyResolver(object):
    """Resolve (selector, domain) to a L{KeyRecord}.

    Lookups go through C{dns}, an object with a coroutine
    C{lookup_txt(name, timeout)}.  Concurrent requests for the same key,
    from this or any other verification sharing the resolver, wait on a
    single outstanding lookup, which runs for at most C{lookup_timeout}
    seconds however long each caller is prepared to wait.  Verifications
    may run in different threads, each with its own event loop; the
    lookup runs in the loop of the first caller and the others wait on
    its result through a L{concurrent.futures.Future}.
    """

    def __init__(self, dns=None, cache=None, logger=None, lookup_timeout=5):
        if dns is None:
            from dkimverify.dnsplug import get_resolver
            dns = get_resolver()
        self.dns = dns
        if cache is None:
            cache = KeyCache()
        self.cache = cache
        self.lookup_timeout = lookup_timeout
        self.logger = logger or get_default_logger()
        self._inflight = {}
        self._lock = threading.Lock()

    @staticmethod
    def record_name(selector, domain):
        return "%s._domainkey.%s" % (selector, domain.rstrip('.'))

    async def resolve(self, selector, domain, timeout=5):
        """Return the key record for selector and domain.

        @param timeout: seconds this caller is prepared to wait
        @raise PermanentFailure: no usable record exists
        @raise TemporaryFailure: the lookup failed or timed out
        """
        key = KeyCache._key(domain, selector)
        record = self.cache.get(*key)
        if record is not None:
            self.logger.debug("key cache hit for %s" % (
                self.record_name(selector, domain)))
            return record
        with self._lock:
            future = self._inflight.get(key)
            if future is None:
                future = concurrent.futures.Future()
                self._inflight[key] = future
                task = asyncio.ensure_future(
                    self._fetch(key, selector, domain))
                task.add_done_callback(
                    lambda t: self._done(key, future, t))
        try:
            # shield: one caller's deadline must not cancel the lookup
            # other callers are waiting on.
            return await asyncio.wait_for(
                asyncio.shield(asyncio.wrap_future(future)), timeout)
        except asyncio.TimeoutError:
            raise TemporaryFailure(
                Reason.TIMEOUT, "timed out looking up %s" % (
                    self.record_name(selector, domain)))

    def _done(self, key, future, task):
        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]
        if task.cancelled():
            # The loop running the lookup shut down before it finished.
            future.set_exception(TemporaryFailure(
                Reason.DNS_ERROR, "lookup of %s was abandoned" % (
                    self.record_name(key[1], key[0]))))
        elif task.exception() is not None:
            future.set_exception(task.exception())
        else:
            future.set_result(task.result())

    async def _fetch(self, key, selector, domain):
        timeout = self.lookup_timeout
        name = self.record_name(selector, domain)
        self.logger.debug("looking up key %s" % name)
        try:
            answer = await asyncio.wait_for(
                self.dns.lookup_txt(name, timeout=timeout), timeout)
            records, ttl = self._records(answer)
            if not records:
                raise PermanentFailure(
                    Reason.NO_KEY, "missing public key: %s" % name)
            record = self._first_usable(records)
        except asyncio.TimeoutError:
            self.cache.invalidate(*key)
            raise TemporaryFailure(
                Reason.TIMEOUT, "timed out looking up %s" % name)
        except OSError as e:
            self.cache.invalidate(*key)
            raise TemporaryFailure(
                Reason.DNS_ERROR, "error looking up %s: %s" % (name, e))
        except DKIMException as e:
            self.cache.invalidate(*key)
            self.logger.debug("key lookup %s failed: %s" % (name, e))
            raise
        self.cache.put(key[0], key[1], record, ttl)
        return record

    @staticmethod
    def _records(answer):
        if answer is None:
            return [], None
        if isinstance(answer, (bytes, str)):
            return [answer], None
        ttl = getattr(answer, 'ttl', None)
        records = getattr(answer, 'records', answer)
        return [x for x in records if x], ttl

    @staticmethod
    def _first_usable(records):
        """Parse records in order, returning the first that is a key."""
        error = None
        for txt in records:
            try:
                return parse_key_record(txt)
            except PermanentFailure as e:
                if error is None:
                    error = e
        raise error


_default_resolver = None
_default_lock = threading.Lock()


def default_key_resolver():
    """Return the process-wide L{KeyResolver} over the default DNS backend.

    Verifications given neither a key resolver nor a DNS backend share
    it, and with it one key cache.  Callers with their own backend share
    a cache by passing the same L{KeyResolver} to each verification.
    """
    global _default_resolver
    with _default_lock:
        if _default_resolver is None:
            _default_resolver = KeyResolver()
        return _default_resolver
