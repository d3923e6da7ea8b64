class UsageLensError(Exception):
    """
    base class for all errors raised by usagelens.
    """


class SecretStoreError(UsageLensError):
    """
    raised when the secret store cannot be read at all. A store
    that simply has no matching entries is not an error.
    """


class ConfigError(UsageLensError):
    """
    raised for invalid configuration, e.g. a malformed secrets file.
    """
