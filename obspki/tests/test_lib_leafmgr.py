import obspki.exc as o_exc

import obspki.lib.certs as o_certs
import obspki.lib.camgr as o_camgr
import obspki.lib.states as o_states
import obspki.lib.leafmgr as o_leafmgr

import obspki.tests.utils as t_utils

srvca = 'observability-server-ca-certs'
clica = 'observability-client-ca-certs'

class LeafMgrTest(t_utils.PkiTest):

    def getTestMgrs(self):
        store = t_utils.CountStore()
        fact = self.getTestFactory()
        cam = o_camgr.CaManager(store, fact)
        cam.ensureCa(srvca, 'server-ca-cn')
        cam.ensureCa(clica, 'client-ca-cn')
        return cam, o_leafmgr.LeafManager(store, fact)

    def test_leafmgr_server(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1'])
        self.eq(3, store.creates)

        self.eq(['server-cn', 'host1'], self.getDnsNames(bund.cert))
        self.eq(store.get(srvca).ca, bund.ca)
        self.true(bund.hasLabel('cluster.open-cluster-management.io/backup', ''))
        self.reqKeyMatch(bund.cert, bund.key)

        leafs.factory.verifyCert(bund.cert, bund.ca)

        # the required names are covered so nothing is written
        writes = store.writes()
        same = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1'])
        self.eq(same, bund)
        self.eq(writes, store.writes())

        # a subset of the covered names is still covered
        same = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['server-cn'])
        self.eq(self.getSerial(same.cert), self.getSerial(bund.cert))
        self.eq(writes, store.writes())

    def test_leafmgr_server_drift(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1'])

        with self.getLoggerStream('obspki.lib.leafmgr') as stream:
            newb = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1', 'host2'])

        stream.seek(0)
        mesgs = stream.read()
        self.isin('missing required names', mesgs)
        self.isin('Certificates renewed: server-certs', mesgs)

        self.eq(1, store.updates)
        self.eq(['server-cn', 'host1', 'host2'], self.getDnsNames(newb.cert))
        self.ne(self.getSerial(bund.cert), self.getSerial(newb.cert))

        # the key is reused across renewal
        self.eq(bund.key, newb.key)
        self.reqKeyMatch(newb.cert, newb.key)

    def test_leafmgr_client(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('grafana-certs', 'client', 'grafana')
        self.eq(['grafana'], self.getDnsNames(bund.cert))
        self.eq(store.get(clica).ca, bund.ca)
        leafs.factory.verifyCert(bund.cert, bund.ca)

        # names are never checked for client certificates
        writes = store.writes()
        same = leafs.ensureLeaf('grafana-certs', 'client', 'grafana', sans=['newp'])
        self.eq(same, bund)
        self.eq(writes, store.writes())

        self.raises(o_exc.BadCertVerify, leafs.factory.verifyCert, bund.cert, store.get(srvca).ca)

    def test_leafmgr_renew(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('grafana-certs', 'client', 'grafana')

        # the leaf follows a rotated CA
        cabund, _ = cam.ensureCa(clica, 'client-ca-cn', renew=True)
        newb = leafs.ensureLeaf('grafana-certs', 'client', 'grafana', renew=True)

        self.ne(self.getSerial(bund.cert), self.getSerial(newb.cert))
        self.eq(cabund.ca, newb.ca)
        self.len(2, o_certs.loadCertsPem(newb.ca))
        self.eq(bund.key, newb.key)

        leafcert = o_certs.loadCertPem(newb.cert)
        self.eq(leafcert.issuer, o_certs.loadCertPem(cabund.cert).subject)
        leafs.factory.verifyCert(newb.cert, cabund.cert)

    def test_leafmgr_conflict(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('grafana-certs', 'client', 'grafana')

        # another writer updates the bundle between the read and the write
        store.raceAfterGet('grafana-certs', lambda bund: bund.withLabel('hehe', 'haha'))

        with self.raises(o_exc.BundleConflict) as cm:
            leafs.ensureLeaf('grafana-certs', 'client', 'grafana', renew=True)

        self.eq('grafana-certs', cm.exception.get('name'))
        self.eq(1, cm.exception.get('vers'))
        self.eq(2, cm.exception.get('curv'))

        curb = store.get('grafana-certs')
        self.eq(2, curb.vers)
        self.eq(bund.ca, curb.ca)
        self.eq(bund.cert, curb.cert)
        self.eq(bund.key, curb.key)
        self.true(curb.hasLabel('hehe', 'haha'))
        self.eq(0, store.updates)

    def test_leafmgr_badkey(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('grafana-certs', 'client', 'grafana')
        bund = store.update(bund.replace(key=b'hehe'))

        with self.getLoggerStream('obspki.lib.leafmgr') as stream:
            newb = leafs.ensureLeaf('grafana-certs', 'client', 'grafana', renew=True)

        stream.seek(0)
        self.isin('Wrong private key found, create new one: grafana-certs', stream.read())
        self.ne(b'hehe', newb.key)
        self.reqKeyMatch(newb.cert, newb.key)

    def test_leafmgr_badcert(self):

        cam, leafs = self.getTestMgrs()
        store = leafs.store

        bund = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1'])
        store.update(bund.replace(cert=b'hehe'))

        # an unparsable server certificate is replaced
        newb = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1'])
        self.eq(['server-cn', 'host1'], self.getDnsNames(newb.cert))
        self.reqKeyMatch(newb.cert, newb.key)

    def test_leafmgr_noca(self):

        store = t_utils.CountStore()
        leafs = o_leafmgr.LeafManager(store, self.getTestFactory())

        with self.getLoggerStream('obspki.lib.leafmgr') as stream:
            with self.raises(o_exc.NoSuchBundle) as cm:
                leafs.ensureLeaf('server-certs', 'server', 'server-cn')

        stream.seek(0)
        self.isin(f'Failed to get ca: {srvca}', stream.read())
        self.eq(srvca, cm.exception.get('name'))
        self.eq(0, store.writes())

        # an unusable CA key is an error rather than a new CA
        cam = o_camgr.CaManager(store, leafs.factory)
        cabund, _ = cam.ensureCa(clica, 'client-ca-cn')
        store.update(cabund.replace(key=b'hehe'))

        with self.raises(o_exc.BadKeyBytes) as cm:
            leafs.ensureLeaf('grafana-certs', 'client', 'grafana')
        self.eq(clica, cm.exception.get('name'))
        self.false(store.has('grafana-certs'))

    def test_leafmgr_badrole(self):
        cam, leafs = self.getTestMgrs()
        self.raises(o_exc.BadArg, leafs.ensureLeaf, 'hehe', 'newp', 'cn')

    def test_leafmgr_state(self):

        cam, leafs = self.getTestMgrs()
        bund = leafs.ensureLeaf('server-certs', 'server', 'server-cn', sans=['host1'])

        self.eq(o_states.BundleState.ABSENT, leafs.getLeafState(None, 'server'))
        self.eq(o_states.BundleState.RENEW, leafs.getLeafState(bund, 'server', renew=True))
        self.eq(o_states.BundleState.UNCHANGED, leafs.getLeafState(bund, 'server', sans=['host1']))
        self.eq(o_states.BundleState.UNCHANGED, leafs.getLeafState(bund, 'server'))
        self.eq(o_states.BundleState.RENEW, leafs.getLeafState(bund, 'server', sans=['host2']))
        self.eq(o_states.BundleState.UNCHANGED, leafs.getLeafState(bund, 'client', sans=['host2']))
