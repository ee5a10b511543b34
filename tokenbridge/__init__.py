"""
tokenbridge Package

Operator-trusted bridge moving a fungible token between Ethereum and Sui.

Core imports are lazily loaded so that the CLI and config layers do not
pull in the ledger stack until it is needed. For direct module access,
import from submodules:

    from tokenbridge.bridge import BridgeOrchestrator
    from tokenbridge.config import load_config
    from tokenbridge.exceptions import SourceRejected
"""

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy module loading."""
    if name == 'BridgeOrchestrator':
        from .bridge.orchestrator import BridgeOrchestrator
        return BridgeOrchestrator
    elif name == 'BridgeService':
        from .bridge.interface import BridgeService
        return BridgeService
    elif name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module 'tokenbridge' has no attribute {name!r}")

__all__ = ['BridgeOrchestrator', 'BridgeService', 'load_config']
