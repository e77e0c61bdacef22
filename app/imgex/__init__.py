"""imgex - flatten layered container images into a single tar archive.

Applies image layers in order, honoring whiteout markers, and writes the
resulting filesystem as one tar stream that extracts in a single pass.
"""

__version__ = "0.1.2"
__description__ = "Container image filesystem export without a container runtime"
