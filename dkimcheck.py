#!/usr/bin/env python

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

import argparse
import logging
import sys

import dkimverify


def filedns(datafile, domain, selector):
    """Serve the key record in datafile for selector._domainkey.domain."""
    with open(datafile, 'rb') as f:
        record = f.read().strip()
    return dkimverify.StaticResolver(
        {dkimverify.KeyResolver.record_name(selector, domain): record})


def main():
    parser = argparse.ArgumentParser(
        description='Verify DKIM signatures on email messages.',
        epilog="message to be verified follows commands on stdin")
    parser.add_argument('-v', '--verbose', action='store_true', default=False,
        help='turn verbose mode on')
    parser.add_argument('-t', '--timeout', type=float, default=5,
        help='Seconds allowed for all key lookups: default=5')
    parser.add_argument('--minkey', type=int, default=1024,
        help='RSA keys shorter than this are reported weak: default=1024')
    parser.add_argument('-r', '--rules', action="store", default=None,
        help='JSON file of signer rules')
    parser.add_argument('--alignment', choices=['relaxed', 'strict'],
        default='relaxed',
        help='Alignment of d= with the From: domain: default=relaxed')
    parser.add_argument('--backend', choices=['aiodns', 'dnspython'],
        default='aiodns', help='DNS library for key lookups: default=aiodns')
    parser.add_argument('-f', '--dnsfile', action="store", default=None,
        help='File containing a DKIM public key record')
    parser.add_argument('-d', '--domain', action="store", default=None,
        help='Domain for DNS record in dnsfile.  Mandatory with -f.')
    parser.add_argument('-s', '--selector', action="store", default=None,
        help='Selector for DNS record in dnsfile.  Mandatory with -f.')
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    logger = logging.getLogger('dkimverify')

    if args.dnsfile:
        if not args.domain or not args.selector:
            parser.error('Both --domain and --selector are required with '
                         '--dnsfile')
        resolver = filedns(args.dnsfile, args.domain, args.selector)
    else:
        resolver = dkimverify.get_resolver(args.backend, logger=logger)

    try:
        rules = dkimverify.load_rules_file(args.rules) if args.rules else ()
    except (OSError, dkimverify.PolicyError) as e:
        parser.error(str(e))
    policy = dkimverify.PolicyEngine(
        rules, alignment=args.alignment, logger=logger)

    # Make sys.stdin a binary stream.
    message = sys.stdin.buffer.read()
    try:
        report = dkimverify.verify(
            message, logger=logger, resolver=resolver, policy=policy,
            minkey=args.minkey, timeout=args.timeout)
    except dkimverify.MalformedMessage as e:
        print("message could not be parsed: %s" % e, file=sys.stderr)
        sys.exit(2)
    for result in report:
        print(result.describe())
    print("verdict: %s" % report.verdict.value)
    if report.verdict is not dkimverify.Verdict.PASS:
        sys.exit(1)


if __name__ == "__main__":
    main()
