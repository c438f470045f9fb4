"""
Link-Layer Isolation

This package cuts devices off the network with ARP poisoning and puts
them back afterwards.

WARNING: Only use on networks you are authorised to manage.

Modules:
- Killer: periodic poisoning of devices flagged as killed
- Restorer: corrective ARP replies when a device is un-killed
"""

from attacks.killer import Killer, KillerStatistics
from attacks.restore import Restorer, RestoreResult

__all__ = [
    'Killer',
    'KillerStatistics',
    'Restorer',
    'RestoreResult',
]
