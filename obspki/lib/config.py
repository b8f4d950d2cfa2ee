import os
import copy
import json
import hashlib
import logging
import datetime
import collections.abc as c_abc

import yaml
import regex
import fastjsonschema

import obspki.exc as o_exc
import obspki.common as o_common

from fastjsonschema.exceptions import JsonSchemaValueException

logger = logging.getLogger(__name__)

# Cache of validator functions
_JsValidators = {}  # type: ignore

durunits = {
    'h': 3600.0,
    'm': 60.0,
    's': 1.0,
    'ms': 0.001,
}
duration_re = regex.compile(r'(?P<valu>[0-9]+(?:\.[0-9]*)?)(?P<unit>ms|h|m|s)')

def parseDuration(text):
    '''
    Parse a duration string such as ``8760h`` or ``1h30m`` into a timedelta.

    Args:
        text (str): A sequence of number+unit pairs using the units h, m, s and ms.

    Returns:
        datetime.timedelta: The parsed duration.

    Raises:
        BadConfValu: If the text is not a valid, positive duration.
    '''
    text = text.strip()

    secs = 0.0
    offs = 0
    for match in duration_re.finditer(text):
        if match.start() != offs:
            break
        secs += float(match.group('valu')) * durunits[match.group('unit')]
        offs = match.end()

    if not text or offs != len(text):
        raise o_exc.BadConfValu(mesg=f'Invalid duration: {text!r}', name='cert:duration', valu=text)

    if secs <= 0:
        raise o_exc.BadConfValu(mesg=f'Duration must be positive: {text!r}', name='cert:duration', valu=text)

    return datetime.timedelta(seconds=secs)

def getJsSchema(confdefs):
    '''
    Generate a JSON Schema for an object from a dictionary of property definitions.

    Notes:
        This generates a JSON Schema draft 7 schema for a single object, which does not allow for
        additional properties to be set on it.

    Returns:
        dict: A complete JSON schema.
    '''
    props = {}
    schema = {
        '$schema': 'http://json-schema.org/draft-07/schema#',
        'additionalProperties': False,
        'properties': props,
        'type': 'object'
    }
    props.update(confdefs)
    return schema

def getJsValidator(schema, use_default=True):
    '''
    Get a fastjsonschema callable.

    Args:
        schema (dict): A JSON Schema object.
        use_default (bool): Whether to insert "default" key arguments into the validated data structure.

    Returns:
        callable: A callable function that can be used to validate data against the json schema.
    '''
    if schema.get('$schema') is None:
        schema['$schema'] = 'http://json-schema.org/draft-07/schema#'

    # It is faster to hash and cache the functions here than it is to
    # generate new functions each time we have the same schema.
    byts = json.dumps((schema, use_default), sort_keys=True).encode()
    key = hashlib.md5(byts, usedforsecurity=False).hexdigest()
    func = _JsValidators.get(key)
    if func:
        return func

    func = fastjsonschema.compile(schema, use_default=use_default)

    def wrap(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except JsonSchemaValueException as e:
            raise o_exc.SchemaViolation(mesg=e.message, name=e.name) from e

    _JsValidators[key] = wrap
    return wrap

def make_envar_name(key, prefix=None):
    '''
    Convert a colon delimited string into an uppercase, underscore delimited string.

    Args:
        key (str): Config key to convert.
        prefix (str): Optional string prefix to prepend the the config key.

    Returns:
        str: The string to lookup against a envar.
    '''
    nk = f'{key.replace(":", "_")}'
    if prefix:
        nk = f'{prefix}_{nk}'
    return nk.upper()

class Config(c_abc.MutableMapping):
    '''
    Configuration helper based on JSON Schema.

    Args:
        schema (dict): The JSON Schema (draft v7) which to validate
                       configuration data against.
        conf (dict): Optional, a set of configuration data to preload.
        envar_prefixes (list): Optional, a list of prefix strings used when collecting
                               configuration data from environment variables.

    Notes:
        This class implements the collections.abc.MutableMapping class, so it
        may be used where a dictionary would otherwise be used.

        Default values are not loaded into the configuration data until
        the ``reqConfValid()`` method is called.
    '''
    def __init__(self,
                 schema,
                 conf=None,
                 envar_prefixes=None,
                 ):
        self.json_schema = schema
        if conf is None:
            conf = {}
        if envar_prefixes is None:
            envar_prefixes = ('', )
        self.conf = {}
        self.envar_prefixes = envar_prefixes
        self.validator = getJsValidator(self.json_schema)
        self._prop_validators = {}
        for k, v in self.json_schema.get('properties').items():
            prop_schema = {
                '$schema': 'http://json-schema.org/draft-07/schema#',
            }
            prop_schema.update(v)
            self._prop_validators[k] = getJsValidator(prop_schema)
        # Copy the data in so that it is validated.
        for k, v in conf.items():
            self[k] = v

    def setConfFromFile(self, path):
        '''
        Set the opts for a conf object from YAML file path.
        '''
        item = o_common.yamlload(path)
        if item is None:
            return

        if not isinstance(item, dict):
            raise o_exc.BadConfValu(mesg=f'Config file must contain a mapping: {path}', path=path)

        for name, valu in item.items():
            self.setdefault(name, valu)

    def setConfFromEnvs(self):
        '''
        Set configuration options from environment variables.

        Notes:
            Environment variables are resolved from configuration options after doing the following transform:

            - Replace ``:`` characters with ``_``.
            - Add a config provided prefix, if set.
            - Uppercase the string.
            - Resolve the environment variable
            - If the environment variable is set, set the config value to the results of ``yaml.safe_load()``
              on the value.

        Examples:

            For the configuration value ``cert:duration``, the environment variable is resolved as
            ``OBSPKI_CERT_DURATION`` when using the ``obspki`` prefix.

        Returns:
            dict: Returns a dictionary of values which were set from enviroment variables.
        '''
        updates = {}
        for prefix in self.envar_prefixes:
            name2envar = self.getEnvarMapping(prefix=prefix)
            for name, envar in name2envar.items():
                envv = os.getenv(envar)
                if envv is not None:
                    envv = yaml.safe_load(envv)

                    # duration strings such as "10" parse as integers
                    if isinstance(envv, (int, float)) and self.json_schema['properties'][name].get('type') == 'string':
                        envv = str(envv)

                    curv = self.get(name, o_common.novalu)
                    if curv is not o_common.novalu:
                        if curv != envv:
                            logger.warning(f'Config from envar [{envar}] skipped due to already being set!')
                        continue

                    self.setdefault(name, envv)
                    logger.debug(f'Set config valu from envar: [{envar}]')
                    updates[name] = envv

        return updates

    def getEnvarMapping(self, prefix=None):
        '''
        Get a mapping of config values to envars.
        '''
        if prefix is None:
            prefix = self.envar_prefixes[0]
        ret = {}
        for name in self.json_schema.get('properties', {}).keys():
            envar = make_envar_name(name, prefix=prefix)
            ret[name] = envar
        return ret

    def reqConfValid(self):
        '''
        Validate that the loaded configuration data is valid according to the schema.

        Notes:
            The validation does set any default values which are not currently
            set for configuration options.

        Returns:
            None: This returns nothing.
        '''
        try:
            self.validator(self.conf)
        except o_exc.SchemaViolation as e:
            logger.exception('Configuration is invalid.')
            raise o_exc.BadConfValu(mesg=f'Invalid configuration found: [{str(e)}]') from None
        else:
            return

    def reqConfValu(self, key):
        '''
        Get a configuration value.  If that value is not present in the schema
        or is not set, then raise an exception.

        Args:
            key (str): The key to require.

        Returns:
            The requested value.
        '''
        if key not in self.json_schema.get('properties', {}):
            raise o_exc.BadArg(mesg='Required key is not present in the configuration schema.',
                               key=key)

        if key not in self.conf:
            raise o_exc.NeedConfValu(mesg='Required key is not present in configuration data.',
                                     key=key)

        return self.conf.get(key)

    def reqKeyValid(self, key, value):
        '''
        Test if a key is valid for the provided schema it is associated with.

        Raises:
            BadArg: If the key has no associated schema.
            BadConfValu: If the data is not schema valid.
        '''
        validator = self._prop_validators.get(key)
        if validator is None:
            raise o_exc.BadArg(mesg=f'Key {key} is not a valid config', key=key)
        try:
            validator(value)
        except o_exc.SchemaViolation as e:
            raise o_exc.BadConfValu(mesg=f'Invalid config for {key}, {e.get("mesg")}', name=key, value=value) from None
        return

    def asDict(self):
        '''
        Get a copy of configuration data.

        Returns:
            dict: A copy of the configuration data.
        '''
        return copy.deepcopy(self.conf)

    def __repr__(self):
        info = [self.__class__.__module__ + '.' + self.__class__.__name__]
        info.append(f'at {hex(id(self))}')
        info.append(f'conf={self.conf}')
        return '<{}>'.format(' '.join(info))

    # ABC methods
    def __len__(self):
        return len(self.conf)

    def __iter__(self):
        return self.conf.__iter__()

    def __delitem__(self, key):
        return self.conf.__delitem__(key)

    def __setitem__(self, key, value):
        self.reqKeyValid(key, value)
        return self.conf.__setitem__(key, value)

    def __getitem__(self, item):
        return self.conf.__getitem__(item)

def _strdef(desc, defv):
    return {'description': desc, 'type': 'string', 'minLength': 1, 'default': defv}

pkiconfdefs = {
    'cert:org': _strdef('The Subject organization for every certificate.', 'Red Hat, Inc.'),
    'cert:country': _strdef('The Subject country for every certificate.', 'US'),
    'cert:duration': {
        'description': 'Lifetime of leaf certificates (for example 8760h). CA certificates live five times longer.',
        'type': 'string',
        'pattern': '^([0-9]+(\\.[0-9]*)?(ms|h|m|s))+$',
        'default': '8760h',
    },
    'ca:server:name': _strdef('Bundle name of the server CA.', 'observability-server-ca-certs'),
    'ca:server:cn': _strdef('Common name of the server CA.', 'observability-server-ca-certificate'),
    'ca:client:name': _strdef('Bundle name of the client CA.', 'observability-client-ca-certs'),
    'ca:client:cn': _strdef('Common name of the client CA.', 'observability-client-ca-certificate'),
    'cert:server:name': _strdef('Bundle name of the server certificate.', 'observability-server-certs'),
    'cert:server:cn': _strdef('Common name of the server certificate.', 'observability-server-certificate'),
    'cert:client:name': _strdef('Bundle name of the grafana client certificate.', 'observability-grafana-certs'),
    'cert:client:cn': _strdef('Common name of the grafana client certificate.', 'grafana'),
    'csr:name': _strdef('Bundle name of the externally signed collector client certificate.',
                        'observability-controller-open-cluster-management.io-observability-signer-client-cert'),
    'csr:cn': _strdef('Common name of the collector certificate request.', 'observability-client-ca-certificate'),
    'csr:ou': _strdef('Organizational unit attribute of the collector certificate request.', 'acm'),
    'csr:user': _strdef('User attribute of the collector certificate request.', 'managed-cluster-observability'),
    'csr:dns': _strdef('DNS name requested by the collector certificate request.',
                       'observability-controller.addon.open-cluster-management.io'),
    'hosts:service': _strdef('Internal service name every server certificate must cover.',
                             'observability-observatorium-api.open-cluster-management-observability.svc'),
    'backup:label': _strdef('Label added to bundles so they are picked up by backups.',
                            'cluster.open-cluster-management.io/backup'),
    'backup:value': {
        'description': 'Value of the backup label.',
        'type': 'string',
        'default': '',
    },
    'store:dirn': _strdef('Directory used by the directory backed bundle store.', '~/.obspki/bundles'),
}

pkischema = getJsSchema(pkiconfdefs)

class PkiConf(Config):
    '''
    The configuration collaborator for the certificate managers.
    '''
    def __init__(self, conf=None, envar_prefixes=('obspki',)):
        Config.__init__(self, pkischema, conf=conf, envar_prefixes=envar_prefixes)

    def getCertDuration(self):
        '''
        Get the leaf certificate lifetime.

        Returns:
            datetime.timedelta: The lifetime of a leaf certificate.
        '''
        return parseDuration(self.reqConfValu('cert:duration'))

    def getCaNameForRole(self, role):
        if role not in ('server', 'client'):
            raise o_exc.BadArg(mesg=f'Invalid certificate role: {role}', role=role)
        return self.reqConfValu(f'ca:{role}:name')

def getPkiConf(conf=None, path=None, envs=True):
    '''
    Construct a validated PkiConf.

    Values given in ``conf`` take precedence over values from the environment,
    which take precedence over values from the YAML file at ``path``.

    Args:
        conf (dict): Optional configuration values.
        path (str): Optional path to a YAML configuration file.
        envs (bool): Load values from OBSPKI_ prefixed environment variables.

    Returns:
        PkiConf: A configuration object with defaults applied.
    '''
    pconf = PkiConf(conf=conf)

    if envs:
        pconf.setConfFromEnvs()

    if path is not None:
        pconf.setConfFromFile(path)

    pconf.reqConfValid()

    # fail early on durations the pattern admits but which are not usable
    pconf.getCertDuration()
    return pconf
