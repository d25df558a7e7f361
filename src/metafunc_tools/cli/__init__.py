"""Command line interfaces for metafunc_tools."""
