'''
This contains the core test helper code used in obspki.

The core class, obspki.tests.utils.PkiTest is a subclass of unittest.TestCase,
with several wrapper functions to allow for easier calls to assert* functions,
with less typing.  There are also obspki specific helpers to construct
configurations, stores and certificate factories for tests.

Since PkiTest is built from unittest.TestCase, the use of PkiTest is
compatible with the unittest and pytest frameworks.
'''
import io
import os
import base64
import types
import shutil
import logging
import datetime
import tempfile
import unittest
import threading
import contextlib

import obspki.exc as o_exc

import obspki.lib.certs as o_certs
import obspki.lib.store as o_store
import obspki.lib.config as o_config
import obspki.lib.output as o_output

import cryptography.x509 as c_x509

logger = logging.getLogger(__name__)

class TstOutPut(o_output.OutPutStr):

    def expect(self, substr, throw=True):
        '''
        Check if a string is present in the messages captured by the OutPutStr object.

        Args:
            substr (str): String to check for the existence of.
            throw (bool): If True, a missing substr results in a Exception being thrown.

        Returns:
            bool: True if the string is present; False if the string is not present and throw is False.
        '''
        outs = str(self)
        if outs.find(substr) == -1:
            if throw:
                mesg = 'TestOutPut.expect(%s) not in %s' % (substr, outs)
                raise o_exc.PkiErr(mesg=mesg)
            return False
        return True

    def clear(self):
        self.mesgs.clear()

class StreamEvent(io.StringIO, threading.Event):
    '''
    A combination of a io.StringIO object and a threading.Event object.
    '''
    def __init__(self, *args, **kwargs):
        io.StringIO.__init__(self, *args, **kwargs)
        threading.Event.__init__(self)
        self.mesg = ''

    def setMesg(self, mesg):
        '''
        Clear the internal event and set a new message that is used to set the event.
        '''
        self.mesg = mesg
        self.clear()

    def write(self, s):
        io.StringIO.write(self, s)
        if self.mesg and self.mesg in s:
            self.set()

class CountStore(o_store.MemStore):
    '''
    A MemStore which counts the writes made to it.

    A bundle may be armed with raceAfterGet() so that another writer updates it
    right after the next read, leaving the reader with a stale version.
    '''
    def __init__(self):
        o_store.MemStore.__init__(self)
        self.creates = 0
        self.updates = 0
        self.races = {}

    def raceAfterGet(self, name, func):
        '''
        Update the named bundle with func(bund) once, right after it is next read.
        '''
        self.races[name] = func

    def get(self, name):
        bund = o_store.MemStore.get(self, name)
        func = self.races.pop(name, None)
        if func is not None:
            o_store.MemStore.update(self, func(bund))
        return bund

    def create(self, bund):
        bund = o_store.MemStore.create(self, bund)
        self.creates += 1
        return bund

    def update(self, bund):
        bund = o_store.MemStore.update(self, bund)
        self.updates += 1
        return bund

    def writes(self):
        return self.creates + self.updates

class PkiTest(unittest.TestCase):

    def skip(self, mesg):
        raise unittest.SkipTest(mesg)

    def getTestConf(self, conf=None):
        '''
        Get a validated PkiConf which ignores the environment.
        '''
        return o_config.getPkiConf(conf=conf, envs=False)

    def getTestFactory(self, conf=None):
        return o_certs.CertFactory(self.getTestConf(conf=conf))

    def getTestOutp(self):
        '''
        Get a Output instance with a expects() function.

        Returns:
            TstOutPut: A TstOutPut instance.
        '''
        return TstOutPut()

    def genTestCaPem(self, factory, cn, now=None, prvkey=None):
        '''
        Make a PEM encoded CA certificate and key.

        Returns:
            tuple: The PEM certificate bytes and PEM key bytes.
        '''
        keypem, certpem = factory.genCaCert(cn, prvkey=prvkey, now=now)
        return certpem, keypem

    def getTestPem(self, name, byts):
        '''
        Wrap arbitrary bytes in a PEM block with the given label.
        '''
        body = base64.encodebytes(byts)
        return b''.join((f'-----BEGIN {name}-----\n'.encode(), body, f'-----END {name}-----\n'.encode()))

    def getPastTime(self, **kwargs):
        return datetime.datetime.now(datetime.UTC) - datetime.timedelta(**kwargs)

    def getDnsNames(self, certpem):
        return o_certs.getDnsNames(o_certs.loadCertPem(certpem))

    def getSerial(self, certpem):
        return o_certs.loadCertPem(certpem).serial_number

    def reqKeyMatch(self, certpem, keypem):
        '''
        Assert the private key PEM matches the public key of the certificate PEM.
        '''
        cert = o_certs.loadCertPem(certpem)
        prvkey = o_certs.loadKeyPem(keypem)
        self.eq(cert.public_key().public_numbers(), prvkey.public_key().public_numbers())

    def getBasicConstraints(self, cert):
        return cert.extensions.get_extension_for_class(c_x509.BasicConstraints).value

    @contextlib.contextmanager
    def getTestDir(self, chdir=False):
        '''
        Get a temporary directory for test purposes.
        This destroys the directory afterwards.

        Args:
            chdir (boolean): If true, chdir the current process to that directory. This is undone when the context
                             manager exits.

        Returns:
            str: The path to a temporary directory.
        '''
        curd = os.getcwd()
        tempdir = tempfile.mkdtemp()

        try:

            if chdir:
                os.chdir(tempdir)

            yield tempdir

        finally:

            if chdir:
                os.chdir(curd)

            shutil.rmtree(tempdir, ignore_errors=True)

    @contextlib.contextmanager
    def getLoggerStream(self, logname, mesg=''):
        '''
        Get a logger and attach a io.StringIO object to the logger to capture log messages.

        Args:
            logname (str): Name of the logger to get.
            mesg (str): A string which, if provided, sets the StreamEvent event if a message
            containing the string is written to the log.

        Examples:
            Do an action and get the stream of log messages to check against::

                with self.getLoggerStream('obspki.lib.camgr') as stream:
                    cam.ensureCa('server-ca', 'server-ca-cn')

                stream.seek(0)
                mesgs = stream.read()

        Yields:
            StreamEvent: A StreamEvent object
        '''
        stream = StreamEvent()
        stream.setMesg(mesg)
        handler = logging.StreamHandler(stream)
        slogger = logging.getLogger(logname)
        slogger.addHandler(handler)
        level = slogger.level
        slogger.setLevel('DEBUG')
        try:
            yield stream
        finally:
            slogger.removeHandler(handler)
            slogger.setLevel(level)

    @contextlib.contextmanager
    def setTstEnvars(self, **props):
        '''
        Set Environment variables for the purposes of running a specific test.

        Args:
            **props: A kwarg list of envars to set. The values set are run
            through str() to ensure we're setting strings.

        Yields:
            None. Upon exiting, envars are either removed from os.environ or reset to their previous values.
        '''
        old_data = {}
        pop_data = set()
        for key, valu in props.items():
            v = str(valu)
            oldv = os.environ.get(key, None)
            if oldv:
                if oldv == v:
                    continue
                else:
                    old_data[key] = oldv
                    os.environ[key] = v
            else:
                pop_data.add(key)
                os.environ[key] = v

        try:
            yield None
        finally:
            for key in pop_data:
                del os.environ[key]
            for key, valu in old_data.items():
                os.environ[key] = valu

    def eq(self, x, y, msg=None):
        '''
        Assert X is equal to Y
        '''
        self.assertEqual(x, y, msg=msg)

    def ne(self, x, y):
        '''
        Assert X is not equal to Y
        '''
        self.assertNotEqual(x, y)

    def true(self, x, msg=None):
        '''
        Assert X is True
        '''
        self.assertTrue(x, msg=msg)

    def false(self, x, msg=None):
        '''
        Assert X is False
        '''
        self.assertFalse(x, msg=msg)

    def nn(self, x, msg=None):
        '''
        Assert X is not None
        '''
        self.assertIsNotNone(x, msg=msg)
        return x

    def none(self, x, msg=None):
        '''
        Assert X is None
        '''
        self.assertIsNone(x, msg=msg)

    def raises(self, *args, **kwargs):
        '''
        Assert a function raises an exception.
        '''
        return self.assertRaises(*args, **kwargs)

    def isinstance(self, obj, cls, msg=None):
        '''
        Assert a object is the instance of a given class or tuple of classes.
        '''
        self.assertIsInstance(obj, cls, msg=msg)

    def isin(self, member, container, msg=None):
        '''
        Assert a member is inside of a container.
        '''
        self.assertIn(member, container, msg=msg)

    def notin(self, member, container, msg=None):
        '''
        Assert a member is not inside of a container.
        '''
        self.assertNotIn(member, container, msg=msg)

    def gt(self, x, y, msg=None):
        '''
        Assert that X is greater than Y
        '''
        self.assertGreater(x, y, msg=msg)

    def ge(self, x, y, msg=None):
        '''
        Assert that X is greater than or equal to Y
        '''
        self.assertGreaterEqual(x, y, msg=msg)

    def lt(self, x, y, msg=None):
        '''
        Assert that X is less than Y
        '''
        self.assertLess(x, y, msg=msg)

    def le(self, x, y, msg=None):
        '''
        Assert that X is less than or equal to Y
        '''
        self.assertLessEqual(x, y, msg=msg)

    def len(self, x, obj, msg=None):
        '''
        Assert that the length of an object is equal to X
        '''
        if isinstance(obj, types.GeneratorType):
            obj = list(obj)

        self.eq(x, len(obj), msg=msg)
