'''
Leaf certificate bundle lifecycle.
'''
import logging

import obspki.exc as o_exc

import obspki.lib.const as o_const
import obspki.lib.certs as o_certs
import obspki.lib.bundle as o_bundle
import obspki.lib.states as o_states

logger = logging.getLogger(__name__)

class LeafManager:
    '''
    Ensures named server and client certificate bundles exist and are current.

    Args:
        store (obspki.lib.store.Store): The bundle store.
        factory (obspki.lib.certs.CertFactory): The certificate factory.
        log (logging.Logger): Optional logger to use instead of the module logger.

    Notes:
        The issuing CA bundle for a role must already be stored. Server bundles are
        renewed automatically when their DNS names stop covering the required names.
    '''
    def __init__(self, store, factory, log=None):
        if log is None:
            log = logger

        self.log = log
        self.store = store
        self.factory = factory
        self.conf = factory.conf

    def getCa(self, role):
        '''
        Get the active CA for a role.

        Args:
            role (str): Either ``server`` or ``client``.

        Raises:
            NoSuchBundle: If the CA bundle does not exist.
            BadCertBytes, BadKeyBytes: If the CA bundle holds unusable material.

        Returns:
            tuple: The CA certificate, the CA private key and the CA chain PEM bytes.
        '''
        name = self.conf.getCaNameForRole(role)

        try:
            cabund = self.store.get(name)
            cacert = o_certs.loadCertPem(cabund.cert)
            cakey = o_certs.loadKeyPem(cabund.key)
        except o_exc.PkiErr as e:
            self.log.error('Failed to get ca: %s', name, extra={'obspki': {'name': name}})
            e.setdefault('name', name)
            raise

        return cacert, cakey, cabund.ca

    def getLeafState(self, bund, role, sans=None, renew=False):
        '''
        Decide which transition a leaf bundle needs.

        Args:
            bund (Bundle): The stored bundle, or None if it does not exist.
            role (str): Either ``server`` or ``client``.
            sans (list): DNS names the server certificate must cover.
            renew (bool): Whether renewal was requested.

        Returns:
            BundleState: The state of the bundle.
        '''
        if bund is None:
            return o_states.BundleState.ABSENT

        if renew:
            return o_states.BundleState.RENEW

        if role == o_const.ROLE_SERVER and self._isSanDrift(bund, sans):
            return o_states.BundleState.RENEW

        return o_states.BundleState.UNCHANGED

    def _isSanDrift(self, bund, sans):

        try:
            cert = o_certs.loadCertPem(bund.cert)
        except o_exc.BadCertBytes:
            self.log.warning('Failed to parse the server certificate, renew it: %s', bund.name,
                             exc_info=True, extra={'obspki': {'name': bund.name}})
            return True

        if not sans:
            return False

        have = set(o_certs.getDnsNames(cert))
        missing = [name for name in sans if name not in have]
        if missing:
            self.log.info('Server certificate is missing required names, renew it: %s %r', bund.name, missing,
                          extra={'obspki': {'name': bund.name, 'missing': missing}})
            return True

        return False

    def ensureLeaf(self, name, role, cn, ou=None, sans=None, renew=False, ips=None):
        '''
        Ensure a leaf certificate bundle exists and is current.

        Args:
            name (str): The bundle name.
            role (str): Either ``server`` or ``client``; selects the issuing CA and extended key usage.
            cn (str): The certificate common name.
            ou (list): Optional organizational units.
            sans (list): Optional DNS names the certificate must cover.
            renew (bool): Renew the certificate even if it is current.
            ips (list): Optional IP addresses.

        Examples:
            Issue the server certificate for the discovered hosts::

                bund = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=hosts)

        Returns:
            Bundle: The current bundle.
        '''
        if role not in o_const.ROLES:
            raise o_exc.BadArg(mesg=f'Invalid certificate role: {role}', role=role)

        if renew:
            self.log.info('To renew certificates: %s', name, extra={'obspki': {'name': name}})

        try:
            bund = self.store.get(name)
        except o_exc.NoSuchBundle:
            bund = None

        state = self.getLeafState(bund, role, sans=sans, renew=renew)

        if state is o_states.BundleState.ABSENT:
            return self._createLeaf(name, role, cn, ou, sans, ips)

        if state is o_states.BundleState.RENEW:
            return self._renewLeaf(bund, role, cn, ou, sans, ips)

        self.log.info('Certificates already exist: %s', name, extra={'obspki': {'name': name}})
        return self._reqBackupLabel(bund)

    def _createLeaf(self, name, role, cn, ou, sans, ips):

        cacert, cakey, chain = self.getCa(role)

        keypem, certpem = self.factory.genLeafCert(role == o_const.ROLE_SERVER, cn, cacert, cakey,
                                                   ou=ou, dnsnames=sans, ips=ips)

        bund = o_bundle.Bundle(name=name, ca=chain, cert=certpem, key=keypem)
        bund = bund.withLabel(self.conf.reqConfValu('backup:label'), self.conf.reqConfValu('backup:value'))

        bund = self.store.create(bund)
        self.log.info('Certificates created: %s', name, extra={'obspki': {'name': name}})
        return bund

    def _renewLeaf(self, bund, role, cn, ou, sans, ips):

        cacert, cakey, chain = self.getCa(role)

        try:
            prvkey = o_certs.loadKeyPem(bund.key)
        except o_exc.BadKeyBytes:
            self.log.warning('Wrong private key found, create new one: %s', bund.name,
                             exc_info=True, extra={'obspki': {'name': bund.name}})
            prvkey = None

        keypem, certpem = self.factory.genLeafCert(role == o_const.ROLE_SERVER, cn, cacert, cakey,
                                                   ou=ou, dnsnames=sans, ips=ips, prvkey=prvkey)

        newb = bund.replace(ca=chain, cert=certpem, key=keypem)
        newb = self.store.update(newb)

        self.log.info('Certificates renewed: %s', bund.name, extra={'obspki': {'name': bund.name}})
        return newb

    def _reqBackupLabel(self, bund):
        return self.store.reqLabel(bund, self.conf.reqConfValu('backup:label'), self.conf.reqConfValu('backup:value'))
