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

__all__ = [
    'bitsize',
    'DigestTooLargeError',
    'ed25519_sign',
    'ed25519_verify',
    'HASH_ALGORITHMS',
    'parse_ed25519_public_key',
    'parse_pem_private_key',
    'parse_private_key',
    'parse_public_key',
    'RSASSA_PKCS1_v1_5_sign',
    'RSASSA_PKCS1_v1_5_verify',
    'UnparsableKeyError',
    'verify_signature',
    ]

import base64
import binascii
import hashlib
import re

import nacl.exceptions
import nacl.signing

from dkimverify.asn1 import (
    ASN1FormatError,
    asn1_build,
    asn1_parse,
    BIT_STRING,
    INTEGER,
    SEQUENCE,
    OBJECT_IDENTIFIER,
    OCTET_STRING,
    NULL,
    )


ASN1_Object = [
    (SEQUENCE, [
        (SEQUENCE, [
            (OBJECT_IDENTIFIER,),
            (NULL,),
        ]),
        (BIT_STRING,),
    ])
]

ASN1_RSAPublicKey = [
    (SEQUENCE, [
        (INTEGER,),
        (INTEGER,),
    ])
]

ASN1_RSAPrivateKey = [
    (SEQUENCE, [
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
        (INTEGER,),
    ])
]

HASH_ALGORITHMS = {
    'rsa-sha1': hashlib.sha1,
    'rsa-sha256': hashlib.sha256,
    'ed25519-sha256': hashlib.sha256,
    }

# These values come from RFC 3447, section 9.2 Notes, page 43.
HASH_ID_MAP = {
    'sha1': b"\x2b\x0e\x03\x02\x1a",
    'sha256': b"\x60\x86\x48\x01\x65\x03\x04\x02\x01",
    }

# 1.2.840.113549.1.1.1
RSA_ENCRYPTION_OID = b"\x2a\x86\x48\x86\xf7\x0d\x01\x01\x01"


class DigestTooLargeError(Exception):
    """The digest is too large to fit within the requested length."""
    pass


class UnparsableKeyError(Exception):
    """The data could not be parsed as a key."""
    pass


def bitsize(x):
    """Return size of long in bits."""
    return len(bin(x)) - 2


def parse_public_key(data):
    """Parse an RSA public key.

    @param data: DER-encoded X.509 subjectPublicKeyInfo
        containing an RFC3447 RSAPublicKey, or a bare RSAPublicKey.
    @return: RSA public key
    """
    try:
        x = asn1_parse(ASN1_Object, data)
        if x[0][0][0] != RSA_ENCRYPTION_OID:
            raise UnparsableKeyError("not an RSA key")
        # The first byte of the BIT STRING counts the unused bits.
        pkd = asn1_parse(ASN1_RSAPublicKey, x[0][1][1:])
    except ASN1FormatError:
        try:
            pkd = asn1_parse(ASN1_RSAPublicKey, data)
        except ASN1FormatError as e:
            raise UnparsableKeyError(str(e))
    pk = {
        'modulus': pkd[0][0],
        'publicExponent': pkd[0][1],
    }
    return pk


def parse_ed25519_public_key(data):
    """Parse a raw 32 byte Ed25519 public key (RFC 8463).

    @return: a C{nacl.signing.VerifyKey}
    """
    try:
        return nacl.signing.VerifyKey(data)
    except (nacl.exceptions.ValueError, nacl.exceptions.TypeError) as e:
        raise UnparsableKeyError(str(e))


def parse_private_key(data):
    """Parse an RSA private key.

    @param data: DER-encoded RFC3447 RSAPrivateKey.
    @return: RSA private key
    """
    try:
        pka = asn1_parse(ASN1_RSAPrivateKey, data)
    except ASN1FormatError as e:
        raise UnparsableKeyError(str(e))
    pk = {
        'version': pka[0][0],
        'modulus': pka[0][1],
        'publicExponent': pka[0][2],
        'privateExponent': pka[0][3],
        'prime1': pka[0][4],
        'prime2': pka[0][5],
        'exponent1': pka[0][6],
        'exponent2': pka[0][7],
        'coefficient': pka[0][8],
    }
    return pk


def parse_pem_private_key(data):
    """Parse a PEM RSA private key.

    @param data: RFC3447 RSAPrivateKey in PEM format.
    @return: RSA private key
    """
    if isinstance(data, str):
        data = data.encode('ascii')
    m = re.search(b"--\r?\n(.*?)\r?\n--", data, re.DOTALL)
    if m is None:
        raise UnparsableKeyError("Private key not found")
    try:
        pkdata = base64.b64decode(m.group(1))
    except (binascii.Error, ValueError) as e:
        raise UnparsableKeyError(str(e))
    return parse_private_key(pkdata)


def EMSA_PKCS1_v1_5_encode(hash, mlen):
    """Encode a digest with RFC3447 EMSA-PKCS1-v1_5.

    @param hash: hash object to encode
    @param mlen: desired message length
    @return: encoded digest byte string
    """
    dinfo = asn1_build(
        (SEQUENCE, [
            (SEQUENCE, [
                (OBJECT_IDENTIFIER, HASH_ID_MAP[hash.name.lower()]),
                (NULL, None),
            ]),
            (OCTET_STRING, hash.digest()),
        ]))
    if len(dinfo) + 11 > mlen:
        raise DigestTooLargeError()
    return b"\x00\x01" + b"\xff" * (mlen - len(dinfo) - 3) + b"\x00" + dinfo


def str2int(s):
    """Convert a byte string to an integer.

    @param s: byte string representing a positive integer to convert
    @return: converted integer
    """
    return int.from_bytes(s, 'big')


def int2str(n, length=-1):
    """Convert an integer to a byte string.

    @param n: positive integer to convert
    @param length: minimum length
    @return: converted bytestring, of at least the minimum length if it was
        specified
    """
    assert n >= 0
    r = n.to_bytes(max(1, (n.bit_length() + 7) // 8), 'big')
    if length >= 0:
        assert len(r) <= length
        r = b"\x00" * (length - len(r)) + r
    return r


def perform_rsa(message, exponent, modulus, mlen):
    """Perform RSA signing or verification.

    @param message: byte string to operate on
    @param exponent: public or private key exponent
    @param modulus: key modulus
    @param mlen: desired output length
    @return: byte string result of the operation
    """
    return int2str(pow(str2int(message), exponent, modulus), mlen)


def RSASSA_PKCS1_v1_5_sign(hash, private_key):
    """Sign a digest with RFC3447 RSASSA-PKCS1-v1_5.

    @param hash: hash object to sign
    @param private_key: private key data
    @return: signed digest byte string
    """
    modlen = len(int2str(private_key['modulus']))
    encoded_digest = EMSA_PKCS1_v1_5_encode(hash, modlen)
    return perform_rsa(
        encoded_digest, private_key['privateExponent'],
        private_key['modulus'], modlen)


def RSASSA_PKCS1_v1_5_verify(hash, signature, public_key):
    """Verify a digest signed with RFC3447 RSASSA-PKCS1-v1_5.

    @param hash: hash object to check
    @param signature: signed digest byte string
    @param public_key: public key data
    @return: True if the signature is valid, False otherwise
    """
    modulus = public_key['modulus']
    modlen = len(int2str(modulus))
    if len(signature) != modlen or str2int(signature) >= modulus:
        return False
    encoded_digest = EMSA_PKCS1_v1_5_encode(hash, modlen)
    signed_digest = perform_rsa(
        signature, public_key['publicExponent'], modulus, modlen)
    return encoded_digest == signed_digest


def ed25519_sign(hash, seed):
    """Sign the digest of hash with the Ed25519 key derived from seed."""
    return nacl.signing.SigningKey(seed).sign(hash.digest()).signature


def ed25519_verify(hash, signature, public_key):
    """Verify an Ed25519 signature over the digest of hash.

    @param public_key: a C{nacl.signing.VerifyKey}
    @return: True if the signature is valid, False otherwise
    """
    try:
        public_key.verify(hash.digest(), signature)
    except (nacl.exceptions.BadSignatureError, nacl.exceptions.ValueError):
        return False
    return True


def verify_signature(key_type, hash, signature, public_key):
    """Verify signature over hash with a parsed public key.

    @param key_type: 'rsa' or 'ed25519'
    @return: True if the signature is valid, False otherwise
    @raise DigestTooLargeError: when an RSA modulus is too small for the
    digest
    """
    if key_type == 'rsa':
        return RSASSA_PKCS1_v1_5_verify(hash, signature, public_key)
    elif key_type == 'ed25519':
        return ed25519_verify(hash, signature, public_key)
    raise UnparsableKeyError("unknown key type: %s" % key_type)
