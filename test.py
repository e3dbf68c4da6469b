import doctest
import importlib
import sys
import unittest

from dkimverify.tests import test_suite

# dkimverify.sign is shadowed by the sign() function on the package, so
# modules are looked up by name.
failures = 0
for name in ('dkimverify.canonicalization', 'dkimverify.policy',
             'dkimverify.sign'):
    failures += doctest.testmod(importlib.import_module(name)).failed
result = unittest.TextTestRunner().run(test_suite())
sys.exit(0 if failures == 0 and result.wasSuccessful() else 1)
