"""
Blue/green deployment coordinator for the bankapp workload on Kubernetes.
"""
__version__ = "1.0.0"
