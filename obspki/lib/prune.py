'''
Garbage collection of expired certificates from CA chains.
'''
import logging
import datetime

import obspki.exc as o_exc

import obspki.lib.pem as o_pem
import obspki.lib.certs as o_certs

logger = logging.getLogger(__name__)

def pruneChain(byts, now=None, name=None, log=None):
    '''
    Remove expired or unparsable certificates from a PEM chain.

    Args:
        byts (bytes): The concatenated PEM chain, newest certificate first.
        now (datetime.datetime): The time to check expiration against. Defaults to the current time.
        name (str): Optional bundle name used when logging.
        log (logging.Logger): Optional logger to use instead of the module logger.

    Notes:
        The first block is the active CA certificate and is always kept. Every kept
        block is copied as the original bytes from the end of the block before it
        through its own end; nothing is re-encoded and the order is unchanged.
        A BEGIN marker with no END marker is not a block; when one sits in front
        of a kept block only that block is kept. Bytes after the last block are dropped.

    Returns:
        bytes: The pruned chain.
    '''
    if log is None:
        log = logger

    if now is None:
        now = datetime.datetime.now(datetime.UTC)

    blocks = o_pem.iterPemBlocks(byts)

    first = next(blocks, None)
    if first is None:
        return byts

    offs = first.eoff
    kept = [byts[:offs]]

    for block in blocks:

        soff = offs
        offs = block.eoff

        if o_pem.hasBrokenBlock(byts, soff, block.soff):
            log.warning('Find wrong cert bytes, needs to remove it: %s', name, extra={'obspki': {'name': name}})
            soff = block.soff

        try:
            cert = o_certs.loadCertPem(block.byts)
        except o_exc.BadCertBytes:
            log.warning('Find wrong cert bytes, needs to remove it: %s', name, extra={'obspki': {'name': name}})
            continue

        if cert.not_valid_after_utc < now:
            log.info('CA certificate expired, needs to remove it: %s', name,
                     extra={'obspki': {'name': name, 'serial': cert.serial_number}})
            continue

        kept.append(byts[soff:offs])

    return b''.join(kept)

def pruneExpiredCa(bund, now=None, log=None):
    '''
    Get a copy of a CA bundle with expired certificates removed from its chain.

    Args:
        bund (Bundle): The CA bundle.
        now (datetime.datetime): The time to check expiration against.

    Returns:
        Bundle: The pruned bundle; the same object when nothing was removed.
    '''
    chain = pruneChain(bund.ca, now=now, name=bund.name, log=log)
    if len(chain) == len(bund.ca):
        return bund
    return bund.replace(ca=chain)

class Pruner:
    '''
    Prunes stored CA bundles.

    Args:
        store (obspki.lib.store.Store): The bundle store.
        log (logging.Logger): Optional logger to use instead of the module logger.
    '''
    def __init__(self, store, log=None):
        if log is None:
            log = logger
        self.log = log
        self.store = store

    def pruneCa(self, name, now=None):
        '''
        Remove expired certificates from a stored CA bundle chain.

        The bundle is only written when the chain length changed.

        Returns:
            tuple: The current Bundle and True if it was written.
        '''
        try:
            bund = self.store.get(name)
        except o_exc.NoSuchBundle:
            self.log.error('Failed to get ca bundle: %s', name, extra={'obspki': {'name': name}})
            raise

        newb = pruneExpiredCa(bund, now=now, log=self.log)
        if len(newb.ca) == len(bund.ca):
            return bund, False

        newb = self.store.update(newb)
        self.log.info('Expired certificates are removed: %s', name, extra={'obspki': {'name': name}})
        return newb, True
