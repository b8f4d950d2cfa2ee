'''
The obspki mutual-TLS certificate lifecycle library.
'''

import sys
if (sys.version_info.major, sys.version_info.minor) < (3, 11):  # pragma: no cover
    raise Exception('obspki is not supported on Python versions < 3.11')

from obspki.lib.version import version, verstring
