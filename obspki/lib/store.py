'''
Bundle stores with optimistic concurrency.

Every store hands out Bundle values tagged with the version they were read at.
An update only succeeds when the stored version still matches; otherwise
BundleConflict is raised and the caller must re-read and retry.
'''
import os
import logging
import threading

import obspki.exc as o_exc
import obspki.common as o_common

import obspki.lib.bundle as o_bundle

logger = logging.getLogger(__name__)

class Store:
    '''
    Base class for bundle stores.
    '''

    def get(self, name):
        '''
        Get a bundle by name.

        Raises:
            NoSuchBundle: If the bundle does not exist.

        Returns:
            Bundle: The bundle at its current version.
        '''
        raise NotImplementedError

    def create(self, bund):
        '''
        Store a new bundle.

        Raises:
            DupBundle: If a bundle with the same name already exists.

        Returns:
            Bundle: The stored bundle at its new version.
        '''
        raise NotImplementedError

    def update(self, bund):
        '''
        Replace an existing bundle.

        Raises:
            NoSuchBundle: If the bundle does not exist.
            BundleConflict: If the bundle changed since ``bund`` was read.

        Returns:
            Bundle: The stored bundle at its new version.
        '''
        raise NotImplementedError

    def has(self, name):
        try:
            self.get(name)
        except o_exc.NoSuchBundle:
            return False
        return True

    def reqLabel(self, bund, name, valu):
        '''
        Ensure a stored bundle carries a label, writing it only when it is missing.

        Returns:
            Bundle: The bundle carrying the label.
        '''
        if bund.hasLabel(name, valu):
            return bund
        return self.update(bund.withLabel(name, valu))

    def _reqVers(self, bund, curv):
        if bund.vers != curv:
            mesg = f'Bundle {bund.name} was modified (version {curv}, expected {bund.vers}).'
            raise o_exc.BundleConflict(mesg=mesg, name=bund.name, vers=bund.vers, curv=curv)

class MemStore(Store):
    '''
    An in-memory bundle store.
    '''
    def __init__(self):
        self.lock = threading.Lock()
        self.bunds = {}

    def get(self, name):
        bund = self.bunds.get(name)
        if bund is None:
            raise o_exc.NoSuchBundle(mesg=f'No bundle named {name}.', name=name)
        return bund

    def create(self, bund):
        with self.lock:
            if bund.name in self.bunds:
                raise o_exc.DupBundle(mesg=f'Bundle {bund.name} already exists.', name=bund.name)

            bund = bund.replace(vers=1)
            self.bunds[bund.name] = bund
            return bund

    def update(self, bund):
        with self.lock:
            curb = self.get(bund.name)
            self._reqVers(bund, curb.vers)

            bund = bund.replace(vers=curb.vers + 1)
            self.bunds[bund.name] = bund
            return bund

class DirStore(Store):
    '''
    A bundle store which keeps one YAML document per bundle in a directory.

    Args:
        dirn (str): The directory to store bundles in.

    Notes:
        Each write replaces the whole document with ``os.replace()`` so readers
        never observe a partially written bundle. Version checks are serialized
        within a process; writers in separate processes are only protected by the
        version check itself.
    '''
    def __init__(self, dirn):
        self.dirn = o_common.gendir(dirn)
        self.lock = threading.Lock()

    def _getPath(self, name):
        if not name or name.startswith('.') or os.sep in name or (os.altsep and os.altsep in name):
            raise o_exc.BadArg(mesg=f'Invalid bundle name: {name!r}', name=name)
        return o_common.genpath(self.dirn, f'{name}.yaml')

    def get(self, name):
        info = o_common.yamlload(self._getPath(name))
        if info is None:
            raise o_exc.NoSuchBundle(mesg=f'No bundle named {name}.', name=name)

        if not isinstance(info, dict):
            raise o_exc.StoreErr(mesg=f'Bundle {name} is not a mapping.', name=name)

        return o_bundle.Bundle.unpack(name, info)

    def list(self):
        return sorted(fn[:-5] for fn in os.listdir(self.dirn) if fn.endswith('.yaml') and not fn.startswith('.'))

    def create(self, bund):
        with self.lock:
            if os.path.isfile(self._getPath(bund.name)):
                raise o_exc.DupBundle(mesg=f'Bundle {bund.name} already exists.', name=bund.name)
            return self._save(bund.replace(vers=1))

    def update(self, bund):
        with self.lock:
            curb = self.get(bund.name)
            self._reqVers(bund, curb.vers)
            return self._save(bund.replace(vers=curb.vers + 1))

    def _save(self, bund):
        o_common.atomicwrite(o_common.yamldump(bund.pack()), self._getPath(bund.name))
        logger.debug('Saved bundle %s at version %d', bund.name, bund.vers)
        return bund
