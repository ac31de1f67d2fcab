from .adapters.ldap_adapter import LDAPAdapter
from .facade.directory_facade import DirectoryFacade

__all__ = ['LDAPAdapter', 'DirectoryFacade']
