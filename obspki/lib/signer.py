'''
Client certificates signed by an external signing authority.
'''
import logging

import obspki.exc as o_exc

import obspki.lib.const as o_const
import obspki.lib.certs as o_certs
import obspki.lib.bundle as o_bundle

logger = logging.getLogger(__name__)

class Signer:
    '''
    Base class for signing authorities which approve certificate signing requests.
    '''
    def sign(self, csrpem, usages):
        '''
        Sign a certificate signing request.

        Args:
            csrpem (bytes): The PEM encoded request.
            usages (tuple): The requested key usages.

        Returns:
            bytes: The PEM encoded certificate, or None if the request was not signed.
        '''
        raise NotImplementedError

class CaSigner(Signer):
    '''
    Signs requests with a CA bundle held in a store.

    Args:
        store (obspki.lib.store.Store): The bundle store.
        factory (obspki.lib.certs.CertFactory): The certificate factory.
        caname (str): The name of the CA bundle to sign with.
    '''
    def __init__(self, store, factory, caname):
        self.store = store
        self.caname = caname
        self.factory = factory

    def sign(self, csrpem, usages):
        cabund = self.store.get(self.caname)
        cacert = o_certs.loadCertPem(cabund.cert)
        cakey = o_certs.loadKeyPem(cabund.key)
        return self.factory.signCsr(csrpem, cacert, cakey, usages=usages)

class ClientCertManager:
    '''
    Maintains the client certificate bundle whose certificate comes from an external signer.

    Args:
        store (obspki.lib.store.Store): The bundle store.
        factory (obspki.lib.certs.CertFactory): The certificate factory used to build the request.
        signer (Signer): The signing authority.
        log (logging.Logger): Optional logger to use instead of the module logger.
    '''
    usages = (o_const.USAGE_DIGITAL_SIGNATURE, o_const.USAGE_CLIENT_AUTH)

    def __init__(self, store, factory, signer, log=None):
        if log is None:
            log = logger

        self.log = log
        self.store = store
        self.signer = signer
        self.factory = factory
        self.conf = factory.conf

    def ensureSignedCert(self, update=False):
        '''
        Create the signed client certificate bundle, or replace it when update is set.

        Notes:
            A new request and key are generated on every call, so the bundle is only
            written when it is missing or when ``update`` is requested.

        Raises:
            SignerErr: If the signer does not return a certificate.

        Returns:
            Bundle: The current bundle.
        '''
        name = self.conf.reqConfValu('csr:name')

        csrpem, keypem = self.factory.genCsr()

        try:
            certpem = self.signer.sign(csrpem, self.usages)
        except o_exc.SignerErr:
            raise
        except Exception as e:
            self.log.exception('failed to sign CSR: %s', name)
            raise o_exc.SignerErr(mesg=f'failed to sign CSR: {e}', name=name) from e

        if not certpem:
            self.log.error('failed to sign CSR: %s', name, extra={'obspki': {'name': name}})
            raise o_exc.SignerErr(mesg='failed to sign CSR', name=name)

        try:
            return self.store.create(o_bundle.Bundle(name=name, cert=certpem, key=keypem))
        except o_exc.DupBundle:
            if not update:
                return self.store.get(name)

        bund = self.store.get(name)
        bund = self.store.update(bund.replace(cert=certpem, key=keypem))
        self.log.info('Signed client certificate updated: %s', name, extra={'obspki': {'name': name}})
        return bund
