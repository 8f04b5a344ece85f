"""
LDAP client for connecting to and querying LDAP directories.

This module provides functionality to connect to LDAP servers and look up the
attributes of single users by their uid attribute.
"""

import ssl
import base64
import logging
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, Tls, ANONYMOUS, SIMPLE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from ldap_sql_sync.attribute_mapping import DN_ATTRIBUTE
from ldap_sql_sync.config import ConfigurationError

logger = logging.getLogger(__name__)

# Leading bytes of the image formats a photo attribute usually holds
IMAGE_SIGNATURES = (
    (b'\xff\xd8\xff', 'image/jpeg'),
    (b'\x89PNG\r\n\x1a\n', 'image/png'),
    (b'GIF8', 'image/gif'),
)


class LDAPConnectionError(Exception):
    """Raised when LDAP connection fails."""
    pass


class LDAPQueryError(Exception):
    """Raised when LDAP query fails."""
    pass


class LDAPClient:
    """
    LDAP client for connecting to and querying LDAP directories.

    Supports unencrypted connections, LDAPS and StartTLS, with simple or
    anonymous binds. One connection is shared by all lookups of a sync pass.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.host = config['server']
        self.port = int(config.get('port', 389))
        self.method = config.get('method', 'plain')
        self.auth = config.get('auth', 'simple')
        self.bind_dn = config.get('bind_dn', '')
        self.bind_password = config.get('password', '')
        self.base_dn = config.get('base', '')
        self.uid_attribute = config.get('uid', 'uid')
        self.extra_filter = config.get('filter') or ''

        # SSL/TLS configuration
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def server_address(self) -> str:
        return f"{self.host}:{self.port}"

    def connect(self) -> bool:
        """
        Establish and bind the connection to the LDAP server.

        Returns:
            True if connection successful

        Raises:
            ConfigurationError: If the auth mode is not supported
            LDAPConnectionError: If the server cannot be reached or the bind fails
        """
        authentication = self._authentication()

        try:
            self.server = Server(
                self.host,
                port=self.port,
                use_ssl=self.method == 'ssl',
                tls=self._create_tls_config(),
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_address} (method: {self.method})")

            if authentication == SIMPLE:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    authentication=SIMPLE,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout,
                    check_names=False
                )
            else:
                self.connection = Connection(
                    self.server,
                    authentication=ANONYMOUS,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout,
                    check_names=False
                )

            # open() raises on failure and returns nothing
            self.connection.open()

            if self.method == 'tls':
                if not self.connection.start_tls():
                    raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPConnectionError(f"Bind failed: {self.connection.result}")

        except LDAPConnectionError:
            self._discard_connection()
            raise
        except LDAPException as e:
            self._discard_connection()
            raise LDAPConnectionError(f"Failed to connect to LDAP server {self.server_address}: {e}")

        self._connected = True
        logger.info(f"Connected and bound to LDAP server {self.server_address} ({self.auth} bind)")
        return True

    def _authentication(self) -> str:
        if self.auth == 'simple':
            return SIMPLE
        if self.auth == 'anonymous':
            return ANONYMOUS
        if self.auth == 'user':
            raise ConfigurationError("LDAP auth 'user' is unsupported as it requires the user's own credentials")
        raise ConfigurationError(f"Unsupported LDAP auth: {self.auth}")

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if self.method not in ('ssl', 'tls'):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise ConfigurationError(f"Failed to create TLS configuration: {e}")

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Error discarding LDAP connection: {e}")
            self.connection = None

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def build_filter(self, uid_value: str) -> str:
        """Build the search filter ``(&(<uid>=<value>)<extra filter>)`` for one user."""
        return f"(&({self.uid_attribute}={escape_filter_chars(uid_value)}){self.extra_filter})"

    def search_user(self, uid_value: str, attributes: List[str]) -> Dict[str, str]:
        """
        Look up exactly one user and return its raw attributes.

        Args:
            uid_value: Value of the uid attribute identifying the user
            attributes: Attribute names to request

        Returns:
            Attribute name -> value; multiple values are joined by a space and
            the entry's DN is available as ``dn``

        Raises:
            LDAPQueryError: If the search fails or does not match exactly one entry
        """
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

        search_filter = self.build_filter(uid_value)
        logger.debug(f"Searching with filter: {search_filter} in base: {self.base_dn}")

        try:
            success = self.connection.search(
                search_base=self.base_dn,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes
            )
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP query failed: {e}")

        # ldap3 also reports an empty result as an unsuccessful search
        if not success and (self.connection.result or {}).get('result', 0) != 0:
            raise LDAPQueryError(f"Search failed: {self.connection.result}")
        entries = self.connection.entries if success else []

        if len(entries) != 1:
            raise LDAPQueryError(f"Expected exactly one LDAP entry for {uid_value}, got {len(entries)}")

        return self._extract_user_attributes(entries[0])

    def _extract_user_attributes(self, entry) -> Dict[str, str]:
        """Flatten an LDAP entry into a raw directory record."""
        user_data = {DN_ATTRIBUTE: str(entry.entry_dn)}

        for name, values in entry.entry_attributes_as_dict.items():
            if not isinstance(values, (list, tuple)):
                values = [values]
            user_data[name] = ' '.join(_as_text(value) for value in values)

        return user_data

    def get_connection_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics and status.

        Returns:
            Dictionary with connection information
        """
        stats = {
            'connected': self._connected,
            'server': self.server_address,
            'method': self.method,
            'auth': self.auth,
            'verify_ssl': self.verify_ssl,
            'base_dn': self.base_dn,
        }

        if self.connection:
            stats.update({
                'bound': getattr(self.connection, 'bound', False),
                'tls_started': getattr(self.connection, 'tls_started', False)
            })

        return stats

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()


def _as_text(value: Any) -> str:
    """Render an attribute value as text; binary values become a base64 data URI."""
    if isinstance(value, bytes):
        return _data_uri(value)
    return str(value)


def _data_uri(value: bytes) -> str:
    media_type = next((media for signature, media in IMAGE_SIGNATURES if value.startswith(signature)),
                      'application/octet-stream')
    return f"data:{media_type};base64,{base64.b64encode(value).decode('ascii')}"
