"""
The gatekeeper module contains the most common top-level entry points for the package.
"""

from gatekeeper.impl.util import log
from gatekeeper.version import VERSION

from .client import *
from .evaluation import *
from .user import User

__version__ = VERSION

__all__ = ['GatekeeperClient', 'Config', 'User', 'FeatureGate', 'DynamicConfig', 'Layer', 'EvaluationReason', 'EvaluationDetails', 'VERSION', 'log']
