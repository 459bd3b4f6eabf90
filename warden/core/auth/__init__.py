from .access_control import AccessControlState
from .models import Capability, CapabilityKind, Principal
from .ownership import OwnershipState

__all__ = ["AccessControlState", "Capability", "CapabilityKind", "OwnershipState", "Principal"]
