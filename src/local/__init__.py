"""
Local package for the dictation helper subsystem.

This package holds the key listener supervisor, the accelerated binary
install manager, the management console and the merged configuration.
"""
