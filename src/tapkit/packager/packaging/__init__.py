"""
The `packaging` sub-package contains modules related to the construction and
reading of package archives.

This includes:
- Reading and writing the XML package definition.
- Orchestrating the create flow from definition to archive.
- Writing the zip container and reading it back.
"""
