import logging

import msgspec.json as m_json

import obspki.common as o_common

def _encodeUnknown(valu):
    return o_common.trimText(repr(valu))

class JsonFormatter(logging.Formatter):
    '''
    Format log records as single line JSON objects.

    Bundle context passed as ``extra={'obspki': {...}}`` is merged into the
    top level object without replacing the record fields.
    '''

    def format(self, record: logging.LogRecord):

        record.message = record.getMessage()
        ret = {
            'message': self.formatMessage(record),
            'logger': {
                'name': record.name,
                'process': record.processName,
                'filename': record.filename,
                'func': record.funcName,
            },
            'level': record.levelname,
            'time': self.formatTime(record, self.datefmt),
        }

        if record.exc_info:
            name, info = o_common.err(record.exc_info[1], fulltb=True)
            info['errname'] = name
            ret['err'] = info

        extras = getattr(record, 'obspki', None)
        if extras:
            for name, valu in extras.items():
                ret.setdefault(name, valu)

        return m_json.encode(ret, enc_hook=_encodeUnknown).decode()
