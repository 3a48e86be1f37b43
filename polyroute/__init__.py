"""
polyroute - Algebraic Metadata-Private Routing

Encodes routing metadata (sender, recipient, message) as elements of the
polynomial ring Z_q[x]/(x^n + 1) so that a relay can forward traffic using
only ring operations, never learning identities or plaintext.

This package contains:
- ring/     : Ring parameters, polynomial arithmetic, homomorphic back end
- routing/  : Routing codec, patches, gluing constraints, sheaf router
- crypto/   : Device-local identities and CSPRNG helpers
- config.py : Configuration loading and logging setup
- errors.py : Error taxonomy shared by all modules

Copyright (c) 2026 polyroute Project
License: Open Source (see LICENSE)
"""

__version__ = "0.1.0"
__author__ = "polyroute Project"

# Core constants
MAILBOX_ID_BITS = 64
DEFAULT_TOLERANCE = 1e-6
