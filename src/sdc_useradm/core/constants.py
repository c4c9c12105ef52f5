"""Shared constants across the application."""

NAME = 'sdc-useradm'
VERSION = '1.1.0'

# Truth value strings
YES_VALUES = ('1', 'TRUE', 'YES', 'ON', 'true', 'yes', 'on')

# Default configuration values
DEFAULT_UFDS_URL = 'ldaps://localhost:636'
DEFAULT_BIND_DN = 'cn=root'
DEFAULT_BIND_PASSWORD = 'secret'
DEFAULT_USERS_BASE_DN = 'ou=users,o=smartdc'
DEFAULT_LOCAL_CONNECT_TIMEOUT = 15
DEFAULT_MASTER_CONNECT_TIMEOUT = 10
DEFAULT_RETRIES = 2
DEFAULT_RETRY_MAX_DELAY = 10

# Directory object classes
USER_OBJECT_CLASS = 'sdcperson'
KEY_OBJECT_CLASS = 'sdckey'

# Error messages the directory uses for password policy rejections
PASSWORD_POLICY_ERRORS = frozenset([
    'passwordTooShort',
    'insufficientPasswordQuality',
])
MAX_CREATE_ATTEMPTS = 3

# Output defaults
DEFAULT_SEARCH_COLUMNS = 'uuid,login,email,created'
DEFAULT_SEARCH_SORT = '-relevance,login'
LONG_SEARCH_COLUMNS = 'uuid,login,cn,email,company,created_time'
DEFAULT_KEYS_COLUMNS = 'name,fingerprint'
DEFAULT_KEYS_SORT = 'name'
LDIF_PREFERRED_FIELDS = [
    'dn',
    'uuid',
    'login',
    'email',
    'cn',
    'givenname',
    'sn',
]
