import obspki.exc as o_exc

import obspki.lib.hosts as o_hosts

import obspki.tests.utils as t_utils

class HostsTest(t_utils.PkiTest):

    def test_hosts(self):

        hosts = o_hosts.HostDiscovery('api.svc')
        self.eq(['api.svc'], hosts.getHosts())

        hosts = o_hosts.HostDiscovery('api.svc', routefunc=lambda: 'api.apps.example.com')
        self.eq(['api.svc', 'api.apps.example.com'], hosts.getHosts())

    def test_hosts_fail(self):

        def newp():
            raise ValueError('no route')

        hosts = o_hosts.HostDiscovery('api.svc', routefunc=newp)
        with self.raises(o_exc.HostDiscoveryErr) as cm:
            hosts.getHosts()
        self.isin('no route', cm.exception.get('mesg'))

        hosts = o_hosts.HostDiscovery('api.svc', routefunc=lambda: '')
        self.raises(o_exc.HostDiscoveryErr, hosts.getHosts)

        # host discovery failures are configuration errors
        self.true(issubclass(o_exc.HostDiscoveryErr, o_exc.ConfErr))
