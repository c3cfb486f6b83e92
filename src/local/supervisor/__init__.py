"""
The Supervisor package.
Manages the lifecycle of the macOS Globe key listener helper process.

This package contains the central KeyListenerSupervisor class and its helper
modules, which together handle binary discovery, architecture verification,
spawning, output parsing and bounded automatic restarts.
"""
from .supervisor import KeyListenerSupervisor, SupervisorState

__all__ = ['KeyListenerSupervisor', 'SupervisorState']
