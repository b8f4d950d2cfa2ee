'''
Line output for the certs tool, with an in-memory variant for tests.
'''
import sys

class OutPut:
    '''
    Write tool output lines to a text stream.

    Args:
        fd: The stream to write to. Defaults to sys.stdout at the time of each write.
    '''
    def __init__(self, fd=None):
        self.fd = fd

    def printf(self, mesg, addnl=True):
        if addnl:
            mesg += '\n'
        self._write(mesg)

    def _write(self, mesg):
        fd = self.fd
        if fd is None:
            fd = sys.stdout
        fd.write(mesg)

class OutPutStr(OutPut):

    def __init__(self):
        OutPut.__init__(self)
        self.mesgs = []

    def _write(self, mesg):
        self.mesgs.append(mesg)

    def __str__(self):
        return ''.join(self.mesgs)
