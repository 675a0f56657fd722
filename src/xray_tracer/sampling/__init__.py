# Sampling module
from .rules import SamplingRule, SamplingRequest, LocalRulesDocument, wildcard_match
from .local import LocalSampler, Reservoir
from .connector import DaemonSamplingConnector, DaemonConnectorConfig

__all__ = [
    "SamplingRule",
    "SamplingRequest",
    "LocalRulesDocument",
    "LocalSampler",
    "Reservoir",
    "DaemonSamplingConnector",
    "DaemonConnectorConfig",
    "wildcard_match"
]
