'''
obspki version information.
'''
# This module is imported during obspki.__init__.  As such, we can't pull
# arbitrary modules from obspki here.

version = (0, 4, 0)
verstring = '.'.join([str(x) for x in version])
