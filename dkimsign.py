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

import sys
import argparse

import dkimverify


def main():
    parser = argparse.ArgumentParser(
        description='Produce DKIM signature for email messages.',
        epilog="message to be signed follows commands on stdin")
    parser.add_argument('selector', action="store")
    parser.add_argument('domain', action="store")
    parser.add_argument('privatekeyfile', action="store")
    parser.add_argument('--hcanon', choices=['simple', 'relaxed'],
        default='relaxed',
        help='Header canonicalization algorithm: default=relaxed')
    parser.add_argument('--bcanon', choices=['simple', 'relaxed'],
        default='simple',
        help='Body canonicalization algorithm: default=simple')
    parser.add_argument('--signalg',
        choices=['rsa-sha256', 'rsa-sha1', 'ed25519-sha256'],
        default='rsa-sha256',
        help='Signature algorithm: default=rsa-sha256')
    parser.add_argument('--identity', help='Optional value for i= tag.')
    parser.add_argument('--length', action='store_true', default=False,
        help='Add an l= tag with the body length')
    args = parser.parse_args()

    # Make sys.stdin and stdout binary streams.
    stdin = sys.stdin.buffer
    stdout = sys.stdout.buffer

    message = stdin.read()
    with open(args.privatekeyfile, "rb") as f:
        privkey = f.read().strip()
    try:
        sig = dkimverify.sign(
            message, args.selector, args.domain, privkey,
            identity=args.identity, canonicalize=(args.hcanon, args.bcanon),
            signature_algorithm=args.signalg, length=args.length)
        stdout.write(sig)
        stdout.write(message)
    except dkimverify.DKIMException as e:
        print(e, file=sys.stderr)
        stdout.write(message)
        sys.exit(1)


if __name__ == "__main__":
    main()
