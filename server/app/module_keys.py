from enum import Enum


class ModuleKey(str, Enum):
    CLIENTS = "CLIENTS"
    SELLERS = "SELLERS"
    INVOICES = "INVOICES"
    COLLECTIONS = "COLLECTIONS"
    RECEIVABLES = "RECEIVABLES"
    CONTROL = "CONTROL"


MODULE_DEFINITIONS: list[tuple[ModuleKey, str]] = [
    (ModuleKey.CLIENTS, "Clients"),
    (ModuleKey.SELLERS, "Sellers"),
    (ModuleKey.INVOICES, "Invoices"),
    (ModuleKey.COLLECTIONS, "Collections"),
    (ModuleKey.RECEIVABLES, "Receivables"),
    (ModuleKey.CONTROL, "Control"),
]

MODULE_KEYS: list[str] = [module_key.value for module_key, _ in MODULE_DEFINITIONS]
MODULE_KEY_SET: set[str] = set(MODULE_KEYS)
