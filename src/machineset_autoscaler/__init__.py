"""
MachineSet autoscaler: scales an OpenShift worker fleet from node
utilization and automation-platform job backlog.
"""

__version__ = "0.1.0"
