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

"""Signer rules: is a valid signature authoritative for the From: domain?

Rules are tried in order against the From: domain; the first match
decides.  A rule may list the SDIDs allowed to sign for that domain.
When it lists none, the SDID must be aligned with the From: domain.
"""

import fnmatch
import json

from publicsuffixlist import PublicSuffixList

from dkimverify.types import Directive, Reason, Status, Verdict
from dkimverify.util import get_default_logger, PolicyError

__all__ = [
    'aggregate_verdict',
    'is_aligned',
    'load_rules',
    'load_rules_file',
    'organizational_domain',
    'PolicyEngine',
    'SignRule',
    ]

MODES = ('exact', 'subdomain', 'glob')
ALIGNMENTS = ('strict', 'relaxed')

_psl = PublicSuffixList()


def _domain(name):
    return name.strip().rstrip('.').lower()


def organizational_domain(domain):
    """Return the registrable domain of a name, or None for a public
    suffix.

    >>> organizational_domain('mail.example.co.uk')
    'example.co.uk'
    >>> organizational_domain('co.uk') is None
    True
    """
    if not domain:
        return None
    return _psl.privatesuffix(_domain(domain))


def is_aligned(sdid, from_domain, alignment='relaxed'):
    """Check SDID alignment with the From: domain.

    Relaxed alignment compares registrable domains, so sibling
    subdomains of one organization align but a public suffix never does.

    >>> is_aligned('example.com', 'mail.example.com')
    True
    >>> is_aligned('mail.example.com', 'news.example.com')
    True
    >>> is_aligned('example.com', 'mail.example.com', 'strict')
    False
    >>> is_aligned('co.uk', 'victim.co.uk')
    False
    """
    if not sdid or not from_domain:
        return False
    sdid = _domain(sdid)
    from_domain = _domain(from_domain)
    if sdid == from_domain:
        return organizational_domain(sdid) is not None
    if alignment == 'strict':
        return False
    org = organizational_domain(sdid)
    return org is not None and org == organizational_domain(from_domain)


def _match(pattern, domain, mode):
    if mode == 'exact':
        return domain == pattern
    elif mode == 'subdomain':
        return domain == pattern or domain.endswith('.' + pattern)
    return fnmatch.fnmatchcase(domain, pattern)


class SignRule(object):
    """One signer rule.

    @param domain: pattern matched against the From: domain
    @param directive: a L{Directive} or its string value
    @param signers: SDID patterns (glob) allowed to sign, or None for
    "aligned SDIDs only"
    @param mode: 'exact', 'subdomain' or 'glob'
    @param auid: optional glob the AUID must match too
    """

    def __init__(self, domain, directive=Directive.ALLOW, signers=None,
                 mode='exact', auid=None):
        self.domain = domain
        self.directive = directive
        self.signers = signers
        self.mode = mode
        self.auid = auid

    def validate(self):
        """Raise L{PolicyError} unless the rule can be evaluated."""
        if not isinstance(self.domain, str) or not _domain(self.domain):
            raise PolicyError("rule has no domain pattern: %r" % (
                self.domain,))
        if self.mode not in MODES:
            raise PolicyError("rule %s: unknown matching mode %r" % (
                self.domain, self.mode))
        try:
            directive = Directive(self.directive)
        except ValueError:
            raise PolicyError("rule %s: unknown directive %r" % (
                self.domain, self.directive))
        if self.signers is not None:
            if isinstance(self.signers, str) or not all(
                    isinstance(x, str) and x.strip() for x in self.signers):
                raise PolicyError("rule %s: signers must be a list of "
                                  "domains" % self.domain)
            if directive is Directive.NEUTRAL:
                raise PolicyError("rule %s: signers given for a neutral "
                                  "rule" % self.domain)
        if self.auid is not None and not isinstance(self.auid, str):
            raise PolicyError("rule %s: auid must be a pattern" % self.domain)
        return directive

    def matches(self, from_domain, auid=None):
        self.validate()
        if not from_domain:
            return False
        if not _match(_domain(self.domain), _domain(from_domain), self.mode):
            return False
        if self.auid is not None and auid is not None:
            return fnmatch.fnmatchcase(auid.lower(), self.auid.lower())
        return True

    def authorizes(self, sdid, from_domain, alignment):
        if self.signers is None:
            return is_aligned(sdid, from_domain, alignment)
        sdid = _domain(sdid)
        return any(fnmatch.fnmatchcase(sdid, _domain(x))
                   for x in self.signers)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise PolicyError("rule is not a mapping: %r" % (data,))
        unknown = set(data) - set(('domain', 'directive', 'signers', 'mode',
                                   'auid'))
        if unknown:
            raise PolicyError("rule has unknown keys: %s" % ', '.join(
                sorted(unknown)))
        return cls(data.get('domain'),
                   directive=data.get('directive', Directive.ALLOW.value),
                   signers=data.get('signers'),
                   mode=data.get('mode', 'exact'),
                   auid=data.get('auid'))

    def __repr__(self):
        return '<SignRule %s %s %s>' % (
            self.mode, self.domain, getattr(self.directive, 'value',
                                            self.directive))


def load_rules(data):
    """Build rules from a list of mappings.

    Each mapping has 'domain' and optionally 'directive' ('require-valid',
    'allow' or 'neutral'), 'mode', 'signers' and 'auid'.  Values are not
    checked until the rules are evaluated.
    """
    if not isinstance(data, list):
        raise PolicyError("rules must be a list")
    return [SignRule.from_dict(x) for x in data]


def load_rules_file(path):
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise PolicyError("%s: %s" % (path, e))
    if isinstance(data, dict):
        data = data.get('rules', [])
    return load_rules(data)


def aggregate_verdict(verdicts):
    """Pick the best verdict: PASS > NEUTRAL > TEMP_ERROR > FAIL >
    POLICY_ERROR.  No verdicts at all is NEUTRAL."""
    verdicts = list(verdicts)
    if not verdicts:
        return Verdict.NEUTRAL
    return min(verdicts, key=lambda v: v.rank)


class PolicyEngine(object):
    """Turn verification results into verdicts.

    @param rules: ordered L{SignRule}s (or mappings for L{load_rules})
    @param alignment: 'strict' (SDID equals the From: domain) or 'relaxed'
    (both share a registrable domain)
    @param default: directive applied when no rule matches
    @raise PolicyError: when a rule is neither a L{SignRule} nor a mapping
    """

    def __init__(self, rules=(), alignment='relaxed',
                 default=Directive.ALLOW, logger=None):
        self.rules = []
        for rule in rules:
            if isinstance(rule, dict):
                rule = SignRule.from_dict(rule)
            elif not isinstance(rule, SignRule):
                raise PolicyError("rule is not a mapping: %r" % (rule,))
            self.rules.append(rule)
        if alignment not in ALIGNMENTS:
            raise ValueError("alignment must be strict or relaxed")
        self.alignment = alignment
        self.default = SignRule('*', Directive(default), mode='glob')
        self.logger = logger or get_default_logger()

    def find_rule(self, from_domain, auid=None):
        """Return the first matching rule, or the default rule."""
        for rule in self.rules:
            if rule.matches(from_domain, auid):
                return rule
        return self.default

    def evaluate(self, result, from_domain):
        """Judge one L{dkimverify.results.VerificationResult}.

        @return: (L{Verdict}, detail)
        """
        status = result.status
        if status is Status.TEMPFAIL:
            return Verdict.TEMP_ERROR, 'temporary failure: %s' % result.detail
        if status is Status.NONE and result.signature is None:
            return self.evaluate_unsigned(from_domain)
        if status is not Status.VALID:
            return Verdict.FAIL, 'signature failed: %s' % result.detail

        sdid = result.signature.domain
        try:
            rule = self.find_rule(from_domain, result.signature.auid)
            directive = rule.validate()
        except PolicyError as e:
            self.logger.error("%s" % e)
            return Verdict.POLICY_ERROR, '[%s] %s' % (
                Reason.POLICY_ERROR.value, e)

        if directive is Directive.NEUTRAL:
            return Verdict.NEUTRAL, 'rule %s is neutral' % rule.domain
        if rule.authorizes(sdid, from_domain, self.alignment):
            return Verdict.PASS, '%s is authorized for %s' % (
                sdid, from_domain)
        if directive is Directive.REQUIRE_VALID:
            return Verdict.FAIL, '[%s] %s may not sign for %s' % (
                Reason.WRONG_SIGNER.value, sdid, from_domain)
        return Verdict.NEUTRAL, '%s is not aligned with %s' % (
            sdid, from_domain)

    def evaluate_unsigned(self, from_domain):
        """Verdict for a message without a usable signature."""
        try:
            rule = self.find_rule(from_domain)
            directive = rule.validate()
        except PolicyError as e:
            self.logger.error("%s" % e)
            return Verdict.POLICY_ERROR, '[%s] %s' % (
                Reason.POLICY_ERROR.value, e)
        if directive is Directive.REQUIRE_VALID:
            return Verdict.FAIL, '[%s] %s requires a signature' % (
                Reason.WRONG_SIGNER.value, from_domain)
        return Verdict.NEUTRAL, 'message is not signed'

    def aggregate(self, results):
        return aggregate_verdict(r.verdict for r in results)
