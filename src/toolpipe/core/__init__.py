"""Core domain package for toolpipe.

Core contains matching, parameter resolution, and command execution logic
without any host-application or settings-specific code, keeping the business
logic portable.
"""
