"""Release planning and building.

The pipeline, in order:
- tag: which packages and version a run announces
- graph: releases, variants, artifacts and binaries for those packages
- scheduler: the fewest build steps that produce every binary
- runner + expectations: run the steps and check their output
- linkage: classify the dynamic dependencies of each binary
- manifest + merge: describe the result and fold per-machine manifests
"""

from __future__ import annotations
