'''
CA bundle lifecycle.
'''
import logging

import obspki.exc as o_exc

import obspki.lib.certs as o_certs
import obspki.lib.bundle as o_bundle
import obspki.lib.states as o_states

logger = logging.getLogger(__name__)

class CaManager:
    '''
    Ensures named CA bundles exist and rotates them on request.

    Args:
        store (obspki.lib.store.Store): The bundle store.
        factory (obspki.lib.certs.CertFactory): The certificate factory.
        log (logging.Logger): Optional logger to use instead of the module logger.

    Notes:
        A rotated CA bundle keeps its previous CA certificates in its chain,
        newest first, so peers which still trust the old CA keep validating
        until the old entries are pruned.
    '''
    def __init__(self, store, factory, log=None):
        if log is None:
            log = logger

        self.log = log
        self.store = store
        self.factory = factory
        self.conf = factory.conf

    def getCaState(self, bund, renew=False):
        '''
        Decide which transition a CA bundle needs.

        Args:
            bund (Bundle): The stored bundle, or None if it does not exist.
            renew (bool): Whether renewal was requested.

        Returns:
            BundleState: The state of the bundle.
        '''
        if bund is None:
            return o_states.BundleState.ABSENT

        if renew:
            return o_states.BundleState.RENEW

        return o_states.BundleState.UNCHANGED

    def ensureCa(self, name, cn, renew=False):
        '''
        Ensure the CA bundle exists, rotating it when renewal is requested.

        Args:
            name (str): The bundle name.
            cn (str): The CA common name.
            renew (bool): Rotate the CA certificate.

        Examples:
            Create the server CA if it is missing::

                bund, modified = cam.ensureCa('server-ca', 'server-ca-cn')

        Returns:
            tuple: The current Bundle and True if it was created or renewed.
        '''
        if renew:
            self.log.info('To renew CA certificates: %s', name, extra={'obspki': {'name': name}})

        try:
            bund = self.store.get(name)
        except o_exc.NoSuchBundle:
            bund = None

        state = self.getCaState(bund, renew=renew)

        if state is o_states.BundleState.ABSENT:
            return self._createCa(name, cn), True

        if state is o_states.BundleState.RENEW:
            return self._renewCa(bund, cn), True

        self.log.info('CA certificates already exist: %s', name, extra={'obspki': {'name': name}})
        return self._reqBackupLabel(bund), False

    def _createCa(self, name, cn):

        keypem, certpem = self.factory.genCaCert(cn)

        bund = o_bundle.Bundle(name=name, ca=certpem, cert=certpem, key=keypem)
        bund = bund.withLabel(self.conf.reqConfValu('backup:label'), self.conf.reqConfValu('backup:value'))

        bund = self.store.create(bund)
        self.log.info('CA certificates created: %s', name, extra={'obspki': {'name': name}})
        return bund

    def _renewCa(self, bund, cn):

        prvkey = self.loadBundleKey(bund)

        keypem, certpem = self.factory.genCaCert(cn, prvkey=prvkey)

        newb = bund.replace(ca=certpem + bund.ca, cert=certpem, key=keypem)

        newb = self.store.update(newb)
        self.log.info('CA certificates renewed: %s', bund.name, extra={'obspki': {'name': bund.name}})
        return newb

    def loadBundleKey(self, bund):
        '''
        Load the private key of a bundle, or None if the stored key is unusable.
        '''
        try:
            return o_certs.loadKeyPem(bund.key)
        except o_exc.BadKeyBytes:
            self.log.warning('Wrong private key found, create new one: %s', bund.name,
                             exc_info=True, extra={'obspki': {'name': bund.name}})
            return None

    def _reqBackupLabel(self, bund):
        return self.store.reqLabel(bund, self.conf.reqConfValu('backup:label'), self.conf.reqConfValu('backup:value'))
