import logging

# Logging related constants
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s ' \
             '[%(filename)s:%(funcName)s:%(threadName)s:%(processName)s]'
LOG_LEVEL_CHOICES = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}
LOG_LEVEL_INVERSE_CHOICES = {v: k for k, v in LOG_LEVEL_CHOICES.items()}

# certificate related constants
RSA_KEY_BITS = 2048
RSA_PUBLIC_EXPONENT = 65537

# serial numbers are drawn uniformly below this value
SERIAL_LIMIT = 1 << 128

# CA certificates live this many times longer than leaf certificates
CA_DURATION_FACTOR = 5

ROLE_SERVER = 'server'
ROLE_CLIENT = 'client'
ROLES = (ROLE_SERVER, ROLE_CLIENT)

USAGE_DIGITAL_SIGNATURE = 'digital signature'
USAGE_KEY_ENCIPHERMENT = 'key encipherment'
USAGE_SERVER_AUTH = 'server auth'
USAGE_CLIENT_AUTH = 'client auth'
