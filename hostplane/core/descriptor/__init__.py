"""
Descriptor: modelos, catálogo de paquetes, validación y carga.
"""

from hostplane.core.descriptor.models import DesiredState, ServiceSpec, UserSpec, DriverSpec
from hostplane.core.descriptor.catalog import PackageCatalog, load_package_catalog
from hostplane.core.descriptor.validator import validate_desired_state
from hostplane.core.descriptor.loader import parse_descriptor, load_descriptor, build_desired_state

__all__ = [
    "DesiredState",
    "ServiceSpec",
    "UserSpec",
    "DriverSpec",
    "PackageCatalog",
    "load_package_catalog",
    "validate_desired_state",
    "parse_descriptor",
    "load_descriptor",
    "build_desired_state",
]
