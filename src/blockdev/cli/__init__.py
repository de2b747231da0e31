"""pyblockdev command-line interface."""
