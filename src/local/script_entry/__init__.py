"""
Entry point scripts for standalone helper tasks.

These scripts are run with `python -m` from the project root and provide a
simple, dedicated startup routine for build-time jobs such as prefetching the
bundled llama-server binaries.
"""
