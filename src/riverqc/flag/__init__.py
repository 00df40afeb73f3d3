"""Three-layer flagging: per parameter, per site, across the network."""

from riverqc.flag.network_rules import apply_network_rules, project_output
from riverqc.flag.parameter_rules import apply_parameter_rules
from riverqc.flag.site_rules import apply_site_rules

__all__ = [
    "apply_parameter_rules",
    "apply_site_rules",
    "apply_network_rules",
    "project_output",
]
