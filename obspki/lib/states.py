import enum

class BundleState(enum.Enum):
    '''
    The lifecycle state of a stored bundle, decided before any side effect runs.
    '''
    ABSENT = 'absent'
    UNCHANGED = 'unchanged'
    RENEW = 'renew'
