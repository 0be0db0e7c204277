"""Project version constants.

Logged by the worker at startup so that plans written to the status store
can be traced back to the engine build that wrote them.
"""

ENGINE_NAME: str = "clusterplan"
ENGINE_VERSION: str = "0.1.0"
