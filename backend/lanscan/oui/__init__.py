# Manufacturer resolution module
from .identifiers import normalize_identifier, oui_prefix, analyze_bits
from .store import IdentifierStore
from .providers import LookupProvider, MacVendorsProvider, MacLookupProvider, build_providers
from .intelligence import infer_capabilities, security_profile
from .resolver import ManufacturerResolver, Resolution
from .seed import seed_store

__all__ = [
    "normalize_identifier",
    "oui_prefix",
    "analyze_bits",
    "IdentifierStore",
    "LookupProvider",
    "MacVendorsProvider",
    "MacLookupProvider",
    "build_providers",
    "infer_capabilities",
    "security_profile",
    "ManufacturerResolver",
    "Resolution",
    "seed_store",
]
