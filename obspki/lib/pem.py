'''
Scanning of concatenated PEM blocks with explicit byte offsets.

Encoding and parsing of the objects themselves is done by cryptography; this
module only locates blocks so callers may copy their bytes verbatim.
'''
import collections

import regex

# soff/eoff bound the block from its BEGIN marker through the line ending after its END marker
PemBlock = collections.namedtuple('PemBlock', ('name', 'byts', 'soff', 'eoff'))

# a block body may not cross another BEGIN marker, so an entry which lost its
# END line does not swallow the block after it
pem_re = regex.compile(
    rb'-----BEGIN (?P<name>[^\r\n-]+)-----[ \t]*\r?\n'
    rb'(?P<body>(?:(?!-----BEGIN ).)*?)'
    rb'-----END (?P=name)-----[ \t]*(?:\r?\n|$)',
    flags=regex.DOTALL,
)

begin_marker = b'-----BEGIN '

def iterPemBlocks(byts, offs=0):
    '''
    Yield each complete PEM block found in the bytes, in order.

    Args:
        byts (bytes): Bytes holding zero or more concatenated PEM blocks.
        offs (int): The offset to begin scanning from.

    Notes:
        A BEGIN marker without a matching END marker is skipped and scanning
        resumes at the next BEGIN marker. Use ``hasBrokenBlock()`` to find such
        fragments between two yielded blocks.

    Yields:
        PemBlock: The block name, the raw block bytes and the start/end offsets into ``byts``.
    '''
    for match in pem_re.finditer(byts, pos=offs):
        name = match.group('name').decode('utf8', 'replace')
        yield PemBlock(name, match.group(0), match.start(), match.end())

def decodePem(byts):
    '''
    Find the first PEM block in bytes.

    Args:
        byts (bytes): Bytes holding one or more concatenated PEM blocks.

    Returns:
        tuple: The first PemBlock (or None if no block was found) and the bytes after it.
    '''
    for block in iterPemBlocks(byts):
        return block, byts[block.eoff:]

    return None, byts

def hasBrokenBlock(byts, soff, eoff):
    '''
    Check if the bytes between two blocks hold the start of an unterminated block.
    '''
    return byts.find(begin_marker, soff, eoff) != -1
