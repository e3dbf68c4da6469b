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

import asyncio
import base64
import threading
import unittest

import nacl.signing

from dkimverify.dnsplug import get_resolver, StaticResolver, TxtAnswer
from dkimverify.keys import (
    check_key_usage,
    KeyCache,
    KeyResolver,
    parse_key_record,
    )
from dkimverify.signature import parse_signature
from dkimverify.tests.test_dkim import read_test_data
from dkimverify.types import Reason
from dkimverify.util import PermanentFailure, TemporaryFailure

NAME = 'sel1._domainkey.example.com'


def ed25519_record(seed=b'\x07' * 32, extra=''):
    key = nacl.signing.SigningKey(seed).verify_key
    return 'v=DKIM1; k=ed25519; %sp=%s' % (
        extra, base64.b64encode(bytes(key)).decode('ascii'))


def signature(**tags):
    value = ' v=1; a=%s; d=%s; s=sel1; h=from; bh=AAAA; b=AAAA' % (
        tags.pop('a', 'rsa-sha256'), tags.pop('d', 'example.com'))
    for k, v in tags.items():
        value += '; %s=%s' % (k, v)
    return parse_signature(
        (b'DKIM-Signature', value.encode('ascii') + b'\r\n'), now=0)


class FakeClock(object):

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestParseKeyRecord(unittest.TestCase):

    def assertReason(self, reason, txt):
        try:
            parse_key_record(txt)
        except PermanentFailure as e:
            self.assertEqual(reason, e.reason)
        else:
            self.fail("%s not raised" % reason.value)

    def test_rsa(self):
        key = parse_key_record(read_test_data('test.txt'))
        self.assertEqual('rsa', key.key_type)
        self.assertEqual(2048, key.keysize)
        self.assertEqual(('*',), key.service_types)
        self.assertIsNone(key.hash_algorithms)
        self.assertFalse(key.testing)
        self.assertTrue(key.email_allowed)

    def test_key_type_defaults_to_rsa(self):
        txt = read_test_data('test.txt').replace(b'k=rsa; ', b'')
        self.assertEqual('rsa', parse_key_record(txt).key_type)

    def test_ed25519(self):
        key = parse_key_record(ed25519_record())
        self.assertEqual('ed25519', key.key_type)
        self.assertEqual(256, key.keysize)

    def test_tags(self):
        key = parse_key_record(ed25519_record(
            extra='h=sha256; s=email; t=y:s; n=hello; '))
        self.assertEqual(('sha256',), key.hash_algorithms)
        self.assertEqual(('email',), key.service_types)
        self.assertTrue(key.testing)
        self.assertTrue(key.strict)
        self.assertEqual('hello', key.notes)

    def test_revoked(self):
        self.assertReason(Reason.KEY_REVOKED, 'v=DKIM1; p=')

    def test_missing_key(self):
        self.assertReason(Reason.MALFORMED_KEY, 'v=DKIM1; k=rsa')

    def test_bad_version(self):
        self.assertReason(Reason.MALFORMED_KEY, 'v=DKIM2; p=AAAA')

    def test_unknown_key_type(self):
        self.assertReason(Reason.UNKNOWN_KEY_TYPE, 'v=DKIM1; k=dsa; p=AAAA')

    def test_bad_base64(self):
        self.assertReason(Reason.MALFORMED_KEY, 'v=DKIM1; p=!!!!')

    def test_unparsable_key(self):
        self.assertReason(Reason.MALFORMED_KEY, 'v=DKIM1; p=AAAA')

    def test_not_a_tag_list(self):
        self.assertReason(Reason.MALFORMED_KEY, 'garbage')


class TestCheckKeyUsage(unittest.TestCase):

    def setUp(self):
        self.rsa = parse_key_record(read_test_data('test.txt'))

    def assertReason(self, reason, key, sig):
        try:
            check_key_usage(key, sig)
        except PermanentFailure as e:
            self.assertEqual(reason, e.reason)
        else:
            self.fail("%s not raised" % reason.value)

    def test_usable(self):
        check_key_usage(self.rsa, signature())

    def test_algorithm_mismatch(self):
        self.assertReason(Reason.KEY_ALGORITHM_MISMATCH, self.rsa,
                          signature(a='ed25519-sha256'))

    def test_hash_not_permitted(self):
        key = parse_key_record(
            read_test_data('test.txt').replace(b'k=rsa;', b'k=rsa; h=sha1;'))
        self.assertReason(Reason.HASH_NOT_PERMITTED, key, signature())
        check_key_usage(key, signature(a='rsa-sha1'))

    def test_not_for_email(self):
        key = parse_key_record(ed25519_record(extra='s=tlsrpt; '))
        self.assertReason(Reason.KEY_NOT_AUTHORIZED_FOR_EMAIL, key,
                          signature(a='ed25519-sha256'))

    def test_strict_identity(self):
        key = parse_key_record(ed25519_record(extra='t=s; '))
        check_key_usage(key, signature(a='ed25519-sha256'))
        self.assertReason(
            Reason.IDENTITY_MISMATCH, key,
            signature(a='ed25519-sha256', i='joe@mail.example.com'))


class TestKeyCache(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.cache = KeyCache(default_ttl=60, max_ttl=600, clock=self.clock)

    def test_miss(self):
        self.assertIsNone(self.cache.get('example.com', 'sel1'))

    def test_hit_is_case_insensitive(self):
        self.cache.put('Example.COM.', 'Sel1', 'record')
        self.assertEqual('record', self.cache.get('example.com', 'sel1'))
        self.assertIn(('example.com', 'sel1'), self.cache)

    def test_expiry(self):
        self.cache.put('example.com', 'sel1', 'record', ttl=10)
        self.clock.now += 9
        self.assertEqual('record', self.cache.get('example.com', 'sel1'))
        self.clock.now += 1
        self.assertIsNone(self.cache.get('example.com', 'sel1'))
        self.assertEqual(0, len(self.cache))

    def test_default_ttl(self):
        self.cache.put('example.com', 'sel1', 'record')
        self.clock.now += 59
        self.assertIsNotNone(self.cache.get('example.com', 'sel1'))
        self.clock.now += 1
        self.assertIsNone(self.cache.get('example.com', 'sel1'))

    def test_max_ttl(self):
        self.cache.put('example.com', 'sel1', 'record', ttl=86400)
        self.clock.now += 600
        self.assertIsNone(self.cache.get('example.com', 'sel1'))

    def test_zero_ttl_not_stored(self):
        self.cache.put('example.com', 'sel1', 'record', ttl=0)
        self.assertEqual(0, len(self.cache))

    def test_invalidate(self):
        self.cache.put('example.com', 'sel1', 'record')
        self.cache.invalidate('example.com', 'sel1')
        self.assertIsNone(self.cache.get('example.com', 'sel1'))


class TestStaticResolver(unittest.IsolatedAsyncioTestCase):

    async def test_lookup(self):
        dns = StaticResolver({NAME + '.': 'v=DKIM1; p='}, ttl=30)
        answer = await dns.lookup_txt('SEL1._domainkey.example.com')
        self.assertEqual(TxtAnswer([b'v=DKIM1; p='], 30), answer)

    async def test_missing(self):
        dns = StaticResolver()
        with self.assertRaises(PermanentFailure) as cm:
            await dns.lookup_txt(NAME)
        self.assertEqual(Reason.NO_KEY, cm.exception.reason)

    def test_unknown_backend(self):
        self.assertRaises(ValueError, get_resolver, 'carrier-pigeon')


class TestKeyResolver(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.dns = StaticResolver({NAME: read_test_data('test.txt')})
        self.resolver = KeyResolver(dns=self.dns)

    async def test_resolve(self):
        key = await self.resolver.resolve('sel1', 'example.com')
        self.assertEqual('rsa', key.key_type)
        self.assertEqual([NAME], self.dns.queries)

    async def test_cache_hit_makes_no_query(self):
        await self.resolver.resolve('sel1', 'example.com')
        await self.resolver.resolve('sel1', 'Example.com.')
        self.assertEqual(1, len(self.dns.queries))

    async def test_concurrent_lookups_are_coalesced(self):
        self.dns.delay = 0.05
        keys = await asyncio.gather(*[
            self.resolver.resolve('sel1', 'example.com') for i in range(5)])
        self.assertEqual(1, len(self.dns.queries))
        for key in keys:
            self.assertIs(keys[0], key)

    async def test_resolvers_share_a_cache(self):
        other = KeyResolver(dns=self.dns, cache=self.resolver.cache)
        await self.resolver.resolve('sel1', 'example.com')
        await other.resolve('sel1', 'example.com')
        self.assertEqual(1, len(self.dns.queries))

    async def test_failure_is_not_cached(self):
        with self.assertRaises(PermanentFailure) as cm:
            await self.resolver.resolve('sel2', 'example.com')
        self.assertEqual(Reason.NO_KEY, cm.exception.reason)
        self.dns.add('sel2._domainkey.example.com', ed25519_record())
        key = await self.resolver.resolve('sel2', 'example.com')
        self.assertEqual('ed25519', key.key_type)
        self.assertEqual(2, len(self.dns.queries))

    async def test_timeout(self):
        self.dns.delay = 1
        with self.assertRaises(TemporaryFailure) as cm:
            await self.resolver.resolve('sel1', 'example.com', timeout=0.01)
        self.assertEqual(Reason.TIMEOUT, cm.exception.reason)

    async def test_timeout_does_not_cancel_shared_lookup(self):
        self.dns.delay = 0.1
        impatient = self.resolver.resolve('sel1', 'example.com', timeout=0.01)
        patient = self.resolver.resolve('sel1', 'example.com', timeout=2)
        results = await asyncio.gather(
            impatient, patient, return_exceptions=True)
        self.assertIsInstance(results[0], TemporaryFailure)
        self.assertEqual('rsa', results[1].key_type)
        self.assertEqual(1, len(self.dns.queries))
        self.assertIn(('example.com', 'sel1'), self.resolver.cache)

    async def test_lookup_timeout(self):
        self.dns.delay = 1
        resolver = KeyResolver(dns=self.dns, lookup_timeout=0.01)
        with self.assertRaises(TemporaryFailure) as cm:
            await resolver.resolve('sel1', 'example.com', timeout=2)
        self.assertEqual(Reason.TIMEOUT, cm.exception.reason)

    async def test_first_usable_record(self):
        self.dns.add(NAME, [b'v=spf1 -all', read_test_data('test.txt')])
        key = await self.resolver.resolve('sel1', 'example.com')
        self.assertEqual('rsa', key.key_type)

    async def test_dns_error_is_temporary(self):
        class Broken(object):
            async def lookup_txt(self, name, timeout=5):
                raise OSError("connection refused")
        resolver = KeyResolver(dns=Broken())
        with self.assertRaises(TemporaryFailure) as cm:
            await resolver.resolve('sel1', 'example.com')
        self.assertEqual(Reason.DNS_ERROR, cm.exception.reason)


class TestKeyResolverThreads(unittest.TestCase):
    """One resolver shared by verifications running in separate threads,
    each thread with its own event loop."""

    def resolve_in_threads(self, resolver, count=2, timeout=2):
        barrier = threading.Barrier(count)
        results = [None] * count

        async def resolve():
            barrier.wait(5)
            return await resolver.resolve('sel1', 'example.com',
                                          timeout=timeout)

        def run(i):
            try:
                results[i] = asyncio.run(resolve())
            except Exception as e:
                results[i] = e

        threads = [threading.Thread(target=run, args=(i,))
                   for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        return results

    def test_lookup_shared_across_event_loops(self):
        dns = StaticResolver({NAME: read_test_data('test.txt')}, delay=0.2)
        resolver = KeyResolver(dns=dns)
        results = self.resolve_in_threads(resolver)
        self.assertEqual(['rsa', 'rsa'],
                         [getattr(r, 'key_type', r) for r in results])
        self.assertIs(results[0], results[1])
        self.assertEqual(1, len(dns.queries))

    def test_failure_shared_across_event_loops(self):
        dns = StaticResolver(delay=0.2)
        resolver = KeyResolver(dns=dns)
        results = self.resolve_in_threads(resolver)
        for result in results:
            self.assertIsInstance(result, PermanentFailure)
            self.assertEqual(Reason.NO_KEY, result.reason)
        self.assertEqual(1, len(dns.queries))


def test_suite():
    from unittest import TestLoader
    return TestLoader().loadTestsFromName(__name__)
