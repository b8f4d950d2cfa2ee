import io
import os
import sys
import typing
import logging
import tempfile
import traceback

import yaml

import obspki.exc as o_exc
import obspki.lib.const as o_const
import obspki.lib.structlog as o_structlog

try:
    from yaml import CSafeLoader as Loader
    from yaml import CSafeDumper as Dumper
except ImportError:  # pragma: no cover
    from yaml import SafeLoader as Loader
    from yaml import SafeDumper as Dumper

logger = logging.getLogger(__name__)

class NoValu:
    pass

novalu = NoValu()

def genpath(*paths):
    '''
    Return an absolute path of the joining of the arguments as path elements

    Performs home directory(``~``) and environment variable expansion on the joined path

    Args:
        *paths ([str,...]): A list of path elements
    '''
    path = os.path.join(*paths)
    path = os.path.expanduser(path)
    path = os.path.expandvars(path)
    return os.path.abspath(path)

def gendir(*paths, **opts):
    '''
    Return the absolute path of the joining of the arguments, creating a directory at the resulting path if one does
    not exist.

    Args:
        *paths ([str,...]): A list of path elements
        **opts:  arguments as kwargs to os.makedirs
    '''
    mode = opts.get('mode', 0o700)
    path = genpath(*paths)

    if os.path.islink(path):
        path = os.readlink(path)

    if not os.path.isdir(path):
        os.makedirs(path, mode=mode, exist_ok=True)

    return path

def atomicwrite(byts, *paths):
    '''
    Replace the contents of a file in a single rename.

    The bytes are written to a temporary file in the destination directory
    which is then moved over the destination path with ``os.replace()``.

    Returns:
        str: The absolute path which was written.
    '''
    path = genpath(*paths)
    dirn = gendir(os.path.dirname(path))

    fd, tmppath = tempfile.mkstemp(dir=dirn, prefix='.tmp-')
    try:
        with io.open(fd, 'wb') as fobj:
            fobj.write(byts)
            fobj.flush()
            os.fsync(fobj.fileno())
        os.replace(tmppath, path)
    except Exception:
        os.unlink(tmppath)
        raise

    return path

def yamlloads(data):
    return yaml.load(data, Loader)

def yamlload(*paths):

    path = genpath(*paths)
    if not os.path.isfile(path):
        return None

    with io.open(path, 'rb') as fd:
        return yamlloads(fd)

def yamldump(obj, stream: typing.Optional[typing.BinaryIO] =None) -> bytes:
    '''
    Dump a object to yaml.

    Args:
        obj: The object to serialize.
        stream: The optional stream to write the stream too.

    Returns:
        The raw yaml bytes if stream is not provided.
    '''
    return yaml.dump(obj, allow_unicode=True, default_flow_style=False,
                     default_style='', explicit_start=True, explicit_end=True,
                     encoding='utf8', stream=stream, Dumper=Dumper)

def err(e, fulltb=False):
    '''
    Get the class name and a loggable dictionary for an exception being handled.

    PkiErr info values are included; other exceptions contribute their message.
    The file, line, source and function of the innermost frame are added as
    efile, eline, esrc and ename, and the formatted traceback as etb when fulltb is set.
    '''
    info = {}

    frames = traceback.extract_tb(sys.exc_info()[2])
    if frames:
        frame = frames[-1]
        info.update(efile=os.path.basename(frame.filename), eline=frame.lineno, esrc=frame.line, ename=frame.name)

    if isinstance(e, o_exc.PkiErr):
        info.update(e.items())
    else:
        info['mesg'] = str(e)

    if fulltb:
        info['etb'] = traceback.format_exc().rstrip('\n')

    return e.__class__.__name__, info

def trimText(text: str, n: int = 256, placeholder: str = '...') -> str:
    '''
    Trim a text string larger than n characters and add a placeholder at the end.

    Args:
        text: String to trim.
        n: Number of characters to allow, including the placeholder.
        placeholder: Placeholder text.

    Raises:
        BadArg: If n does not leave room for any text before the placeholder.

    Returns:
        The original string or the trimmed string.
    '''
    if len(text) <= n:
        return text

    mlen = n - len(placeholder)
    if mlen <= 0:
        raise o_exc.BadArg(mesg=f'Cannot trim text to {n} characters with placeholder {placeholder!r}.', n=n)

    return text[:mlen] + placeholder

def envbool(name, defval='false'):
    '''
    Resolve an environment variable to a boolean value.

    Args:
        name (str): Environment variable to resolve.
        defval (str): Default string value to resolve as.

    Notes:
        False values will be consider strings "0" or "false" after lower casing.

    Returns:
        boolean: True if the envar is set, false if it is set to a false value.
    '''
    return os.getenv(name, defval).lower() not in ('0', 'false')

def _getLogConfFromEnv(defval=None, structlog=None, datefmt=None):
    if structlog:
        structlog = 'true'
    else:
        structlog = 'false'
    defval = os.getenv('OBSPKI_LOG_LEVEL', defval)
    datefmt = os.getenv('OBSPKI_LOG_DATEFORMAT', datefmt)
    structlog = envbool('OBSPKI_LOG_STRUCT', structlog)
    ret = {'defval': defval, 'structlog': structlog, 'datefmt': datefmt}
    return ret

def normLogLevel(valu):
    '''
    Norm a log level value to a integer.

    Args:
        valu: The value to norm ( a string or integer ).

    Returns:
        int: A valid Logging log level.
    '''
    if isinstance(valu, int):
        if valu not in o_const.LOG_LEVEL_INVERSE_CHOICES:
            raise o_exc.BadArg(mesg=f'Invalid log level provided: {valu}', valu=valu)
        return valu
    if isinstance(valu, str):
        valu = valu.strip()
        try:
            valu = int(valu)
        except ValueError:
            valu = valu.upper()
            ret = o_const.LOG_LEVEL_CHOICES.get(valu)
            if ret is None:
                raise o_exc.BadArg(mesg=f'Invalid log level provided: {valu}', valu=valu) from None
            return ret
        else:
            return normLogLevel(valu)
    raise o_exc.BadArg(mesg=f'Unknown log level type: {type(valu)} {valu}', valu=valu)

def setlogging(mlogger, defval=None, structlog=None, log_setup=True, datefmt=None):
    '''
    Configure obspki logging.

    Args:
        mlogger (logging.Logger): Reference to a logging.Logger()
        defval (str): Default log level. May be an integer.
        structlog (bool): Enabled structured (jsonl) logging output.
        datefmt (str): Optional strftime format string.

    Notes:
        This calls logging.basicConfig and should only be called once per process.

    Returns:
        dict: The resolved logging configuration.
    '''
    ret = _getLogConfFromEnv(defval, structlog, datefmt)

    datefmt = ret.get('datefmt')
    log_level = ret.get('defval')
    log_struct = ret.get('structlog')

    if log_level:  # pragma: no cover

        log_level = normLogLevel(log_level)

        if log_struct:
            handler = logging.StreamHandler()
            formatter = o_structlog.JsonFormatter(datefmt=datefmt)
            handler.setFormatter(formatter)
            logging.basicConfig(level=log_level, handlers=(handler,))
        else:
            logging.basicConfig(level=log_level, format=o_const.LOG_FORMAT, datefmt=datefmt)
        if log_setup:
            mlogger.info('log level set to %s', o_const.LOG_LEVEL_INVERSE_CHOICES.get(log_level))

    return ret
