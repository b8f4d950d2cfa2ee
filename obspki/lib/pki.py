'''
Orchestration of the CA and leaf certificate bundles for one reconciliation pass.
'''
import logging

import obspki.lib.const as o_const
import obspki.lib.certs as o_certs
import obspki.lib.camgr as o_camgr
import obspki.lib.prune as o_prune
import obspki.lib.hosts as o_hosts
import obspki.lib.leafmgr as o_leafmgr

logger = logging.getLogger(__name__)

class Pki:
    '''
    Ensures every certificate bundle of the mutual-TLS PKI.

    Args:
        conf (obspki.lib.config.PkiConf): The configuration.
        store (obspki.lib.store.Store): The bundle store.
        hosts (obspki.lib.hosts.HostDiscovery): Optional host discovery. Defaults to the configured service name.
        log (logging.Logger): Optional logger to use instead of the module logger.

    Notes:
        CA bundles are always written before the leaf bundles they issue.
        Every call is safe to repeat and writes nothing when all bundles are current.
    '''
    def __init__(self, conf, store, hosts=None, log=None):
        if log is None:
            log = logger

        if hosts is None:
            hosts = o_hosts.HostDiscovery(conf.reqConfValu('hosts:service'))

        self.log = log
        self.conf = conf
        self.store = store
        self.hosts = hosts

        self.factory = o_certs.CertFactory(conf, log=log)
        self.cas = o_camgr.CaManager(store, self.factory, log=log)
        self.leafs = o_leafmgr.LeafManager(store, self.factory, log=log)
        self.pruner = o_prune.Pruner(store, log=log)

    def ensureCerts(self, rotate_server=False, rotate_client=False):
        '''
        Ensure the CA bundles and the leaf bundles they issue.

        Args:
            rotate_server (bool): Rotate the server CA.
            rotate_client (bool): Rotate the client CA.

        Notes:
            A leaf bundle is renewed whenever its CA was created or rotated in this pass.

        Returns:
            dict: The current bundles by name.
        '''
        conf = self.conf

        # resolved before anything is written so a certificate never lacks a host
        hosts = self.hosts.getHosts()

        srvca, srvmod = self.cas.ensureCa(conf.reqConfValu('ca:server:name'), conf.reqConfValu('ca:server:cn'),
                                          renew=rotate_server)
        clica, climod = self.cas.ensureCa(conf.reqConfValu('ca:client:name'), conf.reqConfValu('ca:client:cn'),
                                          renew=rotate_client)

        srvleaf = self.leafs.ensureLeaf(conf.reqConfValu('cert:server:name'), o_const.ROLE_SERVER,
                                        conf.reqConfValu('cert:server:cn'), sans=hosts, renew=srvmod)
        clileaf = self.leafs.ensureLeaf(conf.reqConfValu('cert:client:name'), o_const.ROLE_CLIENT,
                                        conf.reqConfValu('cert:client:cn'), renew=climod)

        return {bund.name: bund for bund in (srvca, clica, srvleaf, clileaf)}

    def pruneCas(self, now=None):
        '''
        Remove expired certificates from both CA chains.

        Returns:
            dict: The CA bundle names mapped to True if the bundle was written.
        '''
        retn = {}
        for name in (self.conf.reqConfValu('ca:server:name'), self.conf.reqConfValu('ca:client:name')):
            _, pruned = self.pruner.pruneCa(name, now=now)
            retn[name] = pruned
        return retn
