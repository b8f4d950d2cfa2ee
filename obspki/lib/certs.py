'''
Construction of CA certificates, leaf certificates and certificate signing requests.
'''
import secrets
import logging
import datetime
import ipaddress

from typing import List, Tuple, Union

from OpenSSL import crypto  # type: ignore

import obspki.exc as o_exc
import obspki.lib.pem as o_pem
import obspki.lib.const as o_const

import cryptography.x509 as c_x509
import cryptography.hazmat.primitives.hashes as c_hashes
import cryptography.hazmat.primitives.asymmetric.rsa as c_rsa
import cryptography.hazmat.primitives.serialization as c_serialization

logger = logging.getLogger(__name__)

StrListOrNone = Union[List[str] | None]
PkeyOrNone = Union[c_rsa.RSAPrivateKey | None]
KeyAndCert = Tuple[bytes, bytes]
DateOrNone = Union[datetime.datetime | None]

def _unpackContextError(e: crypto.X509StoreContextError) -> str:
    if e.args and isinstance(e.args[0], str):
        return e.args[0]
    return 'Certificate failed to verify.'  # pragma: no cover

def genSanNames(cn: str, dnsnames: StrListOrNone = None) -> List[str]:
    '''
    Get the DNS subject alternative names for a leaf certificate.

    The common name always occupies index 0 and the supplied names follow in order.
    Names are not de-duplicated, so a common name which is also present in
    ``dnsnames`` appears twice.

    Args:
        cn: The certificate common name.
        dnsnames: Optional list of additional DNS names.

    Returns:
        The list of DNS names.
    '''
    names = [cn]
    if dnsnames:
        names.extend(dnsnames)
    return names

def getDnsNames(cert: c_x509.Certificate) -> List[str]:
    '''
    Get the DNS subject alternative names from a certificate.

    Returns:
        The list of DNS names, which is empty when the certificate has no SAN extension.
    '''
    try:
        ext = cert.extensions.get_extension_for_class(c_x509.SubjectAlternativeName)
    except c_x509.ExtensionNotFound:
        return []
    return ext.value.get_values_for_type(c_x509.DNSName)

def isValidKey(prvkey) -> bool:
    return isinstance(prvkey, c_rsa.RSAPrivateKey) and prvkey.key_size == o_const.RSA_KEY_BITS

def loadKeyPem(byts: bytes) -> c_rsa.RSAPrivateKey:
    '''
    Load a PKCS#1 RSA private key from PEM bytes.

    Only the first private key block is considered.

    Raises:
        BadKeyBytes: If the bytes do not hold a usable 2048 bit RSA key.
    '''
    try:
        prvkey = c_serialization.load_pem_private_key(byts or b'', password=None)
    except Exception as e:
        raise o_exc.BadKeyBytes(mesg=f'Failed to load key bytes: {e}') from None

    if not isValidKey(prvkey):
        mesg = f'Key is {prvkey.__class__.__name__}, expected a {o_const.RSA_KEY_BITS} bit RSA key.'
        raise o_exc.BadKeyBytes(mesg=mesg)

    return prvkey

def loadCertPem(byts: bytes) -> c_x509.Certificate:
    '''
    Load the first certificate from PEM bytes.

    Raises:
        BadCertBytes: If the bytes do not hold a certificate.
    '''
    try:
        return c_x509.load_pem_x509_certificate(byts or b'')
    except Exception as e:
        raise o_exc.BadCertBytes(mesg=f'Failed to load bytes: {e}') from None

def loadCertsPem(byts: bytes) -> List[c_x509.Certificate]:
    '''
    Load every certificate from a concatenated PEM chain.

    Raises:
        BadCertBytes: If any block in the chain is not a certificate.
    '''
    return [loadCertPem(block.byts) for block in o_pem.iterPemBlocks(byts or b'')]

def loadCsrPem(byts: bytes) -> c_x509.CertificateSigningRequest:
    try:
        return c_x509.load_pem_x509_csr(byts)
    except Exception as e:
        raise o_exc.BadCsrBytes(mesg=f'Failed to load bytes: {e}') from None

def keyToPem(prvkey: c_rsa.RSAPrivateKey) -> bytes:
    # TraditionalOpenSSL is PKCS#1 for RSA keys
    return prvkey.private_bytes(encoding=c_serialization.Encoding.PEM,
                                format=c_serialization.PrivateFormat.TraditionalOpenSSL,
                                encryption_algorithm=c_serialization.NoEncryption(),
                                )

def certToPem(cert: c_x509.Certificate) -> bytes:
    return cert.public_bytes(encoding=c_serialization.Encoding.PEM)

class CertFactory:
    '''
    Certificate and key pair construction for a two tier mutual-TLS PKI.

    Args:
        conf (obspki.lib.config.PkiConf): The configuration supplying the Subject organization and
            country and the leaf certificate lifetime.
        serial_limit (int): Serial numbers are drawn uniformly below this value.
        log (logging.Logger): Optional logger to use instead of the module logger.

    Notes:
        * All key pairs are 2048 bit RSA keys.
        * Certificates are signed using sha256, certificate signing requests using sha512.
        * Build methods return PEM bytes; keys are PKCS#1 "RSA PRIVATE KEY" blocks.
    '''

    def __init__(self, conf, serial_limit=o_const.SERIAL_LIMIT, log=None):
        if log is None:
            log = logger

        self.log = log
        self.conf = conf
        self.serial_limit = serial_limit

        self.crypto_numbits = o_const.RSA_KEY_BITS
        self.signing_digest = c_hashes.SHA256
        self.csr_digest = c_hashes.SHA512

        self.duration = conf.getCertDuration()

    def genSerial(self) -> int:
        # x509 serial numbers must be positive
        return secrets.randbelow(self.serial_limit - 1) + 1

    def genCaCert(self, cn: str, prvkey: PkeyOrNone = None, now: DateOrNone = None) -> KeyAndCert:
        '''
        Build a self-signed CA certificate.

        Args:
            cn: The common name of the CA.
            prvkey: An existing key to reuse. A fresh key is generated if this is None or not a 2048 bit RSA key.
            now: The start of the validity window. Defaults to the current time.

        Examples:
            Make a CA and load its certificate::

                keypem, certpem = factory.genCaCert('root-ca-cn')
                cacert = loadCertPem(certpem)

        Returns:
            Tuple containing the PEM encoded PKCS#1 key and the PEM encoded certificate.
        '''
        prvkey = self._reqPrivKey(cn, prvkey)

        if now is None:
            now = datetime.datetime.now(datetime.UTC)

        subj = self._genSubject(cn)
        pubkey = prvkey.public_key()

        builder = c_x509.CertificateBuilder()
        builder = builder.subject_name(subj)
        builder = builder.issuer_name(subj)
        builder = builder.serial_number(self.genSerial())
        builder = builder.not_valid_before(now)
        builder = builder.not_valid_after(now + self.duration * o_const.CA_DURATION_FACTOR)
        builder = builder.public_key(pubkey)
        builder = builder.add_extension(c_x509.BasicConstraints(ca=True, path_length=None), critical=True)
        builder = builder.add_extension(
            c_x509.KeyUsage(digital_signature=True, key_encipherment=True, data_encipherment=False,
                            key_agreement=False, key_cert_sign=True, crl_sign=False, encipher_only=False,
                            decipher_only=False, content_commitment=False),
            critical=True,
        )
        builder = builder.add_extension(c_x509.SubjectKeyIdentifier.from_public_key(pubkey), critical=False)

        cert = self._signCert(cn, builder, prvkey)
        return keyToPem(prvkey), certToPem(cert)

    def genLeafCert(self,
                    isserver: bool,
                    cn: str,
                    cacert: c_x509.Certificate,
                    cakey: c_rsa.RSAPrivateKey,
                    ou: StrListOrNone = None,
                    dnsnames: StrListOrNone = None,
                    ips: Union[List | None] = None,
                    prvkey: PkeyOrNone = None,
                    now: DateOrNone = None) -> KeyAndCert:
        '''
        Build a leaf certificate signed by a CA.

        Args:
            isserver: Mark the certificate for server auth, otherwise client auth.
            cn: The common name of the certificate.
            cacert: The issuing CA certificate.
            cakey: The issuing CA private key.
            ou: Optional list of organizational units.
            dnsnames: Optional DNS names. The common name is always placed first.
            ips: Optional IP addresses (strings or ipaddress objects).
            prvkey: An existing key to reuse.
            now: The start of the validity window. Defaults to the current time.

        Returns:
            Tuple containing the PEM encoded PKCS#1 key and the PEM encoded certificate.
        '''
        prvkey = self._reqPrivKey(cn, prvkey)

        if now is None:
            now = datetime.datetime.now(datetime.UTC)

        sans = [c_x509.DNSName(name) for name in genSanNames(cn, dnsnames)]
        if ips:
            sans.extend([c_x509.IPAddress(ipaddress.ip_address(ip)) for ip in ips])

        eku = c_x509.oid.ExtendedKeyUsageOID.SERVER_AUTH
        if not isserver:
            eku = c_x509.oid.ExtendedKeyUsageOID.CLIENT_AUTH

        builder = c_x509.CertificateBuilder()
        builder = builder.subject_name(self._genSubject(cn, ou=ou))
        builder = builder.issuer_name(cacert.subject)
        builder = builder.serial_number(self.genSerial())
        builder = builder.not_valid_before(now)
        builder = builder.not_valid_after(now + self.duration)
        builder = builder.public_key(prvkey.public_key())
        builder = builder.add_extension(
            c_x509.KeyUsage(digital_signature=True, key_encipherment=True, data_encipherment=False,
                            key_agreement=False, key_cert_sign=False, crl_sign=False, encipher_only=False,
                            decipher_only=False, content_commitment=False),
            critical=True,
        )
        builder = builder.add_extension(c_x509.ExtendedKeyUsage([eku]), critical=False)
        builder = builder.add_extension(c_x509.SubjectAlternativeName(sans), critical=False)
        builder = builder.add_extension(
            c_x509.AuthorityKeyIdentifier.from_issuer_public_key(cacert.public_key()), critical=False,
        )

        cert = self._signCert(cn, builder, cakey)
        return keyToPem(prvkey), certToPem(cert)

    def genCsr(self, cn: Union[str | None] = None) -> Tuple[bytes, bytes]:
        '''
        Build a client certificate signing request for an external signer.

        The remaining Subject values and the requested DNS name come from the ``csr:*`` configuration values.

        Args:
            cn: The request common name. Defaults to the ``csr:cn`` configuration value.

        Returns:
            Tuple containing the PEM encoded request and the PEM encoded PKCS#1 key.
        '''
        if cn is None:
            cn = self.conf.reqConfValu('csr:cn')

        prvkey = self._genPrivKey(cn)

        subj = c_x509.Name([
            c_x509.NameAttribute(c_x509.NameOID.COUNTRY_NAME, self.conf.reqConfValu('cert:country')),
            c_x509.NameAttribute(c_x509.NameOID.ORGANIZATION_NAME, self.conf.reqConfValu('cert:org')),
            c_x509.NameAttribute(c_x509.NameOID.COMMON_NAME, cn),
            c_x509.NameAttribute(c_x509.NameOID.ORGANIZATIONAL_UNIT_NAME, self.conf.reqConfValu('csr:ou')),
            c_x509.NameAttribute(c_x509.NameOID.COMMON_NAME, self.conf.reqConfValu('csr:user')),
        ])

        builder = c_x509.CertificateSigningRequestBuilder()
        builder = builder.subject_name(subj)
        builder = builder.add_extension(
            c_x509.SubjectAlternativeName([c_x509.DNSName(self.conf.reqConfValu('csr:dns'))]), critical=False,
        )

        try:
            request = builder.sign(prvkey, self.csr_digest())
        except Exception as e:
            self.log.exception('Failed to sign certificate request: %s', cn)
            raise o_exc.CsrSignFailure(mesg=f'Failed to sign certificate request: {e}', cn=cn) from e

        return request.public_bytes(c_serialization.Encoding.PEM), keyToPem(prvkey)

    def signCsr(self, csrpem: bytes,
                cacert: c_x509.Certificate,
                cakey: c_rsa.RSAPrivateKey,
                usages=(o_const.USAGE_DIGITAL_SIGNATURE, o_const.USAGE_CLIENT_AUTH),
                now: DateOrNone = None) -> bytes:
        '''
        Sign a certificate signing request with a CA.

        The request Subject and subject alternative names are copied into the certificate.

        Args:
            csrpem: The PEM encoded request.
            cacert: The issuing CA certificate.
            cakey: The issuing CA private key.
            usages: The requested key usages.
            now: The start of the validity window. Defaults to the current time.

        Raises:
            BadCsrBytes: If the request is malformed or its signature does not verify.
            BadArg: If an unknown usage is requested.

        Returns:
            The PEM encoded certificate.
        '''
        xcsr = loadCsrPem(csrpem)
        if not xcsr.is_signature_valid:
            raise o_exc.BadCsrBytes(mesg='Certificate request signature is invalid.')

        if now is None:
            now = datetime.datetime.now(datetime.UTC)

        kusage = {'digital_signature': False, 'key_encipherment': False}
        ekus = []
        for usage in usages:
            if usage == o_const.USAGE_DIGITAL_SIGNATURE:
                kusage['digital_signature'] = True
            elif usage == o_const.USAGE_KEY_ENCIPHERMENT:
                kusage['key_encipherment'] = True
            elif usage == o_const.USAGE_CLIENT_AUTH:
                ekus.append(c_x509.oid.ExtendedKeyUsageOID.CLIENT_AUTH)
            elif usage == o_const.USAGE_SERVER_AUTH:
                ekus.append(c_x509.oid.ExtendedKeyUsageOID.SERVER_AUTH)
            else:
                raise o_exc.BadArg(mesg=f'Unsupported usage: {usage}', usage=usage)

        builder = c_x509.CertificateBuilder()
        builder = builder.subject_name(xcsr.subject)
        builder = builder.issuer_name(cacert.subject)
        builder = builder.serial_number(self.genSerial())
        builder = builder.not_valid_before(now)
        builder = builder.not_valid_after(now + self.duration)
        builder = builder.public_key(xcsr.public_key())
        builder = builder.add_extension(
            c_x509.KeyUsage(data_encipherment=False, key_agreement=False, key_cert_sign=False, crl_sign=False,
                            encipher_only=False, decipher_only=False, content_commitment=False, **kusage),
            critical=True,
        )
        if ekus:
            builder = builder.add_extension(c_x509.ExtendedKeyUsage(ekus), critical=False)

        try:
            sans = xcsr.extensions.get_extension_for_class(c_x509.SubjectAlternativeName)
        except c_x509.ExtensionNotFound:
            sans = None

        if sans is not None:
            builder = builder.add_extension(sans.value, critical=False)

        cn = xcsr.subject.get_attributes_for_oid(c_x509.NameOID.COMMON_NAME)[0].value
        cert = self._signCert(cn, builder, cakey)
        return certToPem(cert)

    def verifyCert(self, certpem: bytes, chainpem: bytes) -> c_x509.Certificate:
        '''
        Verify a leaf certificate against a chain of CA certificates.

        Args:
            certpem: The PEM encoded leaf certificate.
            chainpem: The PEM encoded CA certificates which may have issued it.

        Raises:
            BadCertVerify: If the certificate does not verify against any certificate in the chain.

        Returns:
            The verified certificate.
        '''
        cert = loadCertPem(certpem)

        store = crypto.X509Store()
        for cacert in loadCertsPem(chainpem):
            store.add_cert(crypto.X509.from_cryptography(cacert))

        ctx = crypto.X509StoreContext(store, crypto.X509.from_cryptography(cert))
        try:
            ctx.verify_certificate()
        except crypto.X509StoreContextError as e:
            raise o_exc.BadCertVerify(mesg=_unpackContextError(e)) from None

        return cert

    def _genSubject(self, cn: str, ou: StrListOrNone = None) -> c_x509.Name:
        attrs = [
            c_x509.NameAttribute(c_x509.NameOID.COUNTRY_NAME, self.conf.reqConfValu('cert:country')),
            c_x509.NameAttribute(c_x509.NameOID.ORGANIZATION_NAME, self.conf.reqConfValu('cert:org')),
        ]
        if ou:
            attrs.extend([c_x509.NameAttribute(c_x509.NameOID.ORGANIZATIONAL_UNIT_NAME, u) for u in ou])
        attrs.append(c_x509.NameAttribute(c_x509.NameOID.COMMON_NAME, cn))
        return c_x509.Name(attrs)

    def _reqPrivKey(self, cn: str, prvkey: PkeyOrNone) -> c_rsa.RSAPrivateKey:
        if prvkey is not None and isValidKey(prvkey):
            return prvkey
        return self._genPrivKey(cn)

    def _genPrivKey(self, cn: str) -> c_rsa.RSAPrivateKey:
        try:
            return c_rsa.generate_private_key(o_const.RSA_PUBLIC_EXPONENT, self.crypto_numbits)
        except Exception as e:
            self.log.exception('Failed to generate private key: %s', cn)
            raise o_exc.KeyGenFailure(mesg=f'Failed to generate private key: {e}', cn=cn) from e

    def _signCert(self, cn: str, builder: c_x509.CertificateBuilder, pkey: c_rsa.RSAPrivateKey) -> c_x509.Certificate:
        try:
            return builder.sign(private_key=pkey, algorithm=self.signing_digest())
        except Exception as e:
            self.log.exception('Failed to create certificate: %s', cn)
            raise o_exc.CertSignFailure(mesg=f'Failed to create certificate: {e}', cn=cn) from e
