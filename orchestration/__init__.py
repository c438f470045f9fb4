"""
Orchestration Module

This package provides the service object that runs discovery, liveness
and poisoning for one interface.
"""

from orchestration.manager import NetworkManager

__all__ = ['NetworkManager']
