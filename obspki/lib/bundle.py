import dataclasses

from typing import Dict

@dataclasses.dataclass(frozen=True, slots=True)
class Bundle:
    '''
    The stored trust chain, active certificate and private key for one named role.

    Attributes:
        name: The bundle name.
        ca: The PEM encoded trust chain, newest certificate first.
        cert: The PEM encoded active certificate.
        key: The PEM encoded PKCS#1 private key matching ``cert``.
        labels: Bookkeeping labels (for example the backup label).
        vers: The store version this value was read at; 0 when never stored.
    '''
    name: str
    ca: bytes = b''
    cert: bytes = b''
    key: bytes = b''
    labels: Dict[str, str] = dataclasses.field(default_factory=dict)
    vers: int = 0

    def replace(self, **kwargs):
        return dataclasses.replace(self, **kwargs)

    def withLabel(self, name, valu):
        labels = dict(self.labels)
        labels[name] = valu
        return dataclasses.replace(self, labels=labels)

    def hasLabel(self, name, valu):
        return self.labels.get(name) == valu

    def pack(self):
        return {
            'ca': self.ca.decode('utf8'),
            'cert': self.cert.decode('utf8'),
            'key': self.key.decode('utf8'),
            'labels': dict(self.labels),
            'vers': self.vers,
        }

    @classmethod
    def unpack(cls, name, info):
        return cls(name=name,
                   ca=(info.get('ca') or '').encode('utf8'),
                   cert=(info.get('cert') or '').encode('utf8'),
                   key=(info.get('key') or '').encode('utf8'),
                   labels=dict(info.get('labels') or {}),
                   vers=info.get('vers', 0))
