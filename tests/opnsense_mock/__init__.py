"""OPNsense alias API mock for integration testing.

Serves the firewall alias endpoints from in-memory state through
httpx.MockTransport, so tests run the real client without an appliance.

Key Features:
- Insertion-ordered alias store with appliance-owned fields (uuid, color, categories)
- Merge-on-update semantics like the appliance's setAlias
- Basic auth checking
- Error injection for lookups, mutations, listings and reconfigure
- Call recording for asserting that nothing was mutated
"""

from .api import TEST_API_KEY, TEST_API_SECRET, TEST_API_URL, MockAliasApi
from .context import MockApplianceContext
from .state import MockAliasState, RecordedCall

__all__ = [
    "TEST_API_KEY",
    "TEST_API_SECRET",
    "TEST_API_URL",
    "MockAliasApi",
    "MockAliasState",
    "MockApplianceContext",
    "RecordedCall",
]
