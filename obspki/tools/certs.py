import sys
import logging
import argparse

import obspki.exc as o_exc
import obspki.common as o_common

import obspki.lib.pki as o_pki
import obspki.lib.certs as o_certs
import obspki.lib.hosts as o_hosts
import obspki.lib.store as o_store
import obspki.lib.config as o_config
import obspki.lib.output as o_output
import obspki.lib.signer as o_signer

logger = logging.getLogger(__name__)

descr = '''
Command line tool to maintain the mutual-TLS certificate bundles.

Actions:
    ensure      Create missing bundles and renew stale ones.
    rotate      Rotate the CA(s) and renew the certificates they issued.
    prune       Remove expired certificates from the CA chains.
    signclient  Create the client certificate signed through a certificate request.
    show        Print the certificates of a bundle.
'''

def _printBundle(outp, bund):

    outp.printf(f'bundle: {bund.name} (version {bund.vers})')

    for label, valu in sorted(bund.labels.items()):
        outp.printf(f'    label: {label}={valu}')

    try:
        cert = o_certs.loadCertPem(bund.cert)
    except o_exc.BadCertBytes as e:
        outp.printf(f'    cert: unparsable ({e.get("mesg")})')
    else:
        outp.printf(f'    cert: {cert.subject.rfc4514_string()} serial={cert.serial_number:x}')
        outp.printf(f'        not after: {cert.not_valid_after_utc.isoformat()}')
        for name in o_certs.getDnsNames(cert):
            outp.printf(f'        dns: {name}')

    try:
        chain = o_certs.loadCertsPem(bund.ca)
    except o_exc.BadCertBytes as e:
        outp.printf(f'    chain: unparsable ({e.get("mesg")})')
        return

    for cacert in chain:
        outp.printf(f'    chain: {cacert.subject.rfc4514_string()} serial={cacert.serial_number:x} '
                    f'not after: {cacert.not_valid_after_utc.isoformat()}')

def main(argv, outp=None):

    if outp is None:  # pragma: no cover
        outp = o_output.OutPut()

    pars = argparse.ArgumentParser(prog='obspki.tools.certs', description=descr,
                                   formatter_class=argparse.RawDescriptionHelpFormatter)
    pars.add_argument('--config', help='Path to a YAML configuration file.')
    pars.add_argument('--store', help='Bundle store directory (overrides store:dirn).')
    pars.add_argument('--route', help='Externally reachable host the server certificate must also cover.')
    pars.add_argument('--log-level', default=None, help='Log level (DEBUG, INFO, WARNING, ...).')
    pars.add_argument('--log-struct', default=False, action='store_true', help='Log as JSON lines.')
    pars.add_argument('--server', default=False, action='store_true', help='rotate: rotate the server CA.')
    pars.add_argument('--client', default=False, action='store_true', help='rotate: rotate the client CA.')
    pars.add_argument('--update', default=False, action='store_true',
                      help='signclient: replace an existing signed client certificate.')
    pars.add_argument('action', choices=('ensure', 'rotate', 'prune', 'signclient', 'show'))
    pars.add_argument('names', nargs='*', help='show: the bundle names to print.')

    opts = pars.parse_args(argv)

    o_common.setlogging(logger, defval=opts.log_level, structlog=opts.log_struct, log_setup=False)

    try:

        conf = o_config.getPkiConf(path=opts.config)

        dirn = opts.store
        if dirn is None:
            dirn = conf.reqConfValu('store:dirn')

        store = o_store.DirStore(dirn)

        routefunc = None
        if opts.route:
            routefunc = lambda: opts.route

        hosts = o_hosts.HostDiscovery(conf.reqConfValu('hosts:service'), routefunc=routefunc)
        pki = o_pki.Pki(conf, store, hosts=hosts)

        if opts.action == 'ensure':
            bunds = pki.ensureCerts()
            for name, bund in bunds.items():
                outp.printf(f'bundle ready: {name} (version {bund.vers})')
            return 0

        if opts.action == 'rotate':
            if not (opts.server or opts.client):
                outp.printf('rotate requires --server and/or --client')
                return 1

            bunds = pki.ensureCerts(rotate_server=opts.server, rotate_client=opts.client)
            for name, bund in bunds.items():
                outp.printf(f'bundle ready: {name} (version {bund.vers})')
            return 0

        if opts.action == 'prune':
            for name, pruned in pki.pruneCas().items():
                if pruned:
                    outp.printf(f'pruned: {name}')
                else:
                    outp.printf(f'unchanged: {name}')
            return 0

        if opts.action == 'signclient':
            signer = o_signer.CaSigner(store, pki.factory, conf.reqConfValu('ca:client:name'))
            ccm = o_signer.ClientCertManager(store, pki.factory, signer)
            bund = ccm.ensureSignedCert(update=opts.update)
            outp.printf(f'bundle ready: {bund.name} (version {bund.vers})')
            return 0

        if not opts.names:
            outp.printf('show requires at least one bundle name')
            return 1

        for name in opts.names:
            _printBundle(outp, store.get(name))

        return 0

    except o_exc.PkiErr as e:
        outp.printf(f'ERROR: {e.errname}: {e.get("mesg")}')
        return 1

if __name__ == '__main__':  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
