'''
Exceptions used by obspki, all inheriting from PkiErr
'''

class PkiErr(Exception):

    def __init__(self, *args, **info):
        self.errinfo = info
        self.errname = self.__class__.__name__
        Exception.__init__(self, self._getExcMsg())

    def _getExcMsg(self):
        props = sorted(self.errinfo.items())
        displ = ' '.join(['%s=%r' % (p, v) for (p, v) in props])
        return '%s: %s' % (self.__class__.__name__, displ)

    def _setExcMesg(self):
        '''Should be called when self.errinfo is modified.'''
        self.args = (self._getExcMsg(),)

    def items(self):
        return {k: v for k, v in self.errinfo.items()}

    def get(self, name, defv=None):
        '''
        Return a value from the errinfo dict.

        Example:

            try:
                cam.ensureCa('server-ca', 'server-ca-cn')
            except PkiErr as e:
                name = e.get('name')

        '''
        return self.errinfo.get(name, defv)

    def set(self, name, valu):
        '''
        Set a value in the errinfo dict.
        '''
        self.errinfo[name] = valu
        self._setExcMesg()

    def setdefault(self, name, valu):
        '''
        Set a value in errinfo dict if it is not already set.
        '''
        if name in self.errinfo:
            return
        self.errinfo[name] = valu
        self._setExcMesg()

class BadArg(PkiErr):
    ''' Improper function arguments '''
    pass

# store
class StoreErr(PkiErr):
    '''The bundle store has encountered an error'''
    pass

class NoSuchBundle(StoreErr): pass
class DupBundle(StoreErr): pass
class BundleConflict(StoreErr):
    '''
    The bundle was written by someone else since it was read.

    The caller must re-read the bundle and retry the whole operation.
    '''
    pass

# parse failures
class BadPemBytes(PkiErr): pass
class BadCertBytes(BadPemBytes): pass
class BadKeyBytes(BadPemBytes): pass
class BadCsrBytes(BadPemBytes): pass

class BadCertVerify(PkiErr): pass

# crypto failures
class CryptoErr(PkiErr): pass
class KeyGenFailure(CryptoErr): pass
class CertSignFailure(CryptoErr): pass
class CsrSignFailure(CryptoErr): pass

class SignerErr(PkiErr):
    '''The external signer refused or failed to sign a request.'''
    pass

# configuration failures
class ConfErr(PkiErr): pass
class BadConfValu(ConfErr):
    '''
    The configuration value provided is not valid.

    This should contain the config name, valu and mesg.
    '''
    pass

class NeedConfValu(ConfErr): pass
class HostDiscoveryErr(ConfErr): pass

class SchemaViolation(PkiErr): pass
