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

import collections

from dkimverify.types import Status
from dkimverify.util import PermanentFailure, TemporaryFailure

__all__ = [
    'Outcome',
    'VerificationReport',
    'VerificationResult',
    ]


#: The result of one stage: a Status, a Reason (or None) and a detail string.
Outcome = collections.namedtuple('Outcome', ['status', 'reason', 'detail'])

OK = Outcome(Status.VALID, None, '')


def outcome_from_exception(e):
    if isinstance(e, TemporaryFailure):
        return Outcome(Status.TEMPFAIL, e.reason, e.detail)
    assert isinstance(e, PermanentFailure)
    return Outcome(Status.PERMFAIL, e.reason, e.detail)


class VerificationResult(object):
    """What became of one DKIM-Signature field.

    Each stage that ran leaves an L{Outcome}: C{parsing},
    C{canonicalization}, C{key_resolution}, C{crypto}.  Stages after a
    failure stay None.  The coordinator freezes the result once the
    verdict is set.
    """

    def __init__(self, index, header=None, signature=None):
        self.index = index
        self.header = header
        self.signature = signature
        self.parsing = None
        self.canonicalization = None
        self.key_resolution = None
        self.crypto = None
        self.key = None
        self.advisories = ()
        self.verdict = None
        self.verdict_detail = ''
        self._frozen = False

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError("VerificationResult is final")
        object.__setattr__(self, name, value)

    def freeze(self):
        self._frozen = True

    def fail(self, stage, e):
        """Record exception e as the outcome of stage."""
        setattr(self, stage, outcome_from_exception(e))

    @property
    def outcome(self):
        """The failed stage, or else the last stage that ran."""
        stages = [x for x in (self.parsing, self.canonicalization,
                              self.key_resolution, self.crypto)
                  if x is not None]
        for stage in stages:
            if stage.status is not Status.VALID:
                return stage
        return stages[-1] if stages else None

    @property
    def status(self):
        if self.outcome is None:
            return Status.NONE
        if self.outcome.status is Status.VALID and self.crypto is None:
            return Status.NONE
        return self.outcome.status

    @property
    def reason(self):
        return self.outcome.reason if self.outcome else None

    @property
    def detail(self):
        return self.outcome.detail if self.outcome else ''

    @property
    def sdid(self):
        return self.signature.domain if self.signature else None

    @property
    def auid(self):
        return self.signature.auid if self.signature else None

    @property
    def selector(self):
        return self.signature.selector if self.signature else None

    @property
    def keysize(self):
        return self.key.keysize if self.key else None

    def describe(self):
        """One line explanation suitable for display."""
        if self.signature is None:
            who = 'signature %d' % self.index if self.header else 'message'
        else:
            who = 'signature by %s (s=%s)' % (self.sdid, self.selector)
        parts = ['%s: %s' % (who, self.verdict.value if self.verdict else
                             self.status.value)]
        if self.reason is not None:
            parts.append('[%s] %s' % (self.reason.value, self.detail))
        if self.advisories:
            parts.append('advisories: %s' % ', '.join(
                x.value for x in self.advisories))
        if self.verdict_detail:
            parts.append(self.verdict_detail)
        return '; '.join(parts)

    def __repr__(self):
        return '<VerificationResult %d %s %s>' % (
            self.index, self.sdid, self.verdict)


class VerificationReport(object):
    """Ordered per-signature results and the aggregate verdict."""

    def __init__(self, results, verdict, from_domain=None):
        self.results = tuple(results)
        self.verdict = verdict
        self.from_domain = from_domain

    def __iter__(self):
        return iter(self.results)

    def __len__(self):
        return len(self.results)

    def __getitem__(self, i):
        return self.results[i]

    def __repr__(self):
        return '<VerificationReport %s, %d results>' % (
            self.verdict.value, len(self.results))
