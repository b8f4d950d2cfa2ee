import logging

import obspki.exc as o_exc

logger = logging.getLogger(__name__)

class HostDiscovery:
    '''
    Resolves the names a server certificate must cover.

    Args:
        svcname (str): The primary internal service name.
        routefunc (callable): Optional callable returning the externally reachable route host.
    '''
    def __init__(self, svcname, routefunc=None):
        self.svcname = svcname
        self.routefunc = routefunc

    def getHosts(self):
        '''
        Get the ordered list of required server names.

        Raises:
            HostDiscoveryErr: If the route host can not be resolved.

        Returns:
            list: The service name followed by the route host, if routes are in use.
        '''
        hosts = [self.svcname]
        if self.routefunc is None:
            return hosts

        try:
            host = self.routefunc()
        except Exception as e:
            logger.exception('Failed to get api route address')
            raise o_exc.HostDiscoveryErr(mesg=f'Failed to get api route address: {e}') from e

        if not host:
            raise o_exc.HostDiscoveryErr(mesg='The api route has no host.')

        hosts.append(host)
        return hosts
