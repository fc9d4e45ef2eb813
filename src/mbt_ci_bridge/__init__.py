"""CI bridge between a git repository of UFT tests and a test-management server.

Discovers GUI/API test assets in the working tree, synchronises them as
model-based-testing units on the server, and runs server-composed MBT
suites through the automation-tool launcher.
"""

__version__ = "25.2.3"
